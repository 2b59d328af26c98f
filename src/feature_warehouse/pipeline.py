"""
Feature Pipeline - drive one partition from flat files to a typed wide table.

Stages run strictly in order, each materializing its output relation before
the next one starts:

    load -> build_fragments -> filter_sources -> build_wide_table -> coerce

Derived relations are registered with replace semantics, so running a
partition twice against the same catalog gives the same tables.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import polars as pl
import structlog

from feature_warehouse.core import feature_joiner
from feature_warehouse.core.catalog import Catalog, TableNotFoundError
from feature_warehouse.core.coercion import CoercionReport, coerce_wide_table, parse_type_rules
from feature_warehouse.core.config_loader import PARTITIONS, partition_dir, partition_prefix
from feature_warehouse.core.feature_joiner import (
    QUALIFIER_SEPARATOR,
    FeatureJoinError,
    FeatureSelection,
    filtered_table_name,
    resolve_sources,
)
from feature_warehouse.core.fragments import IDENTIFIERS_SUFFIX, WIDE_SUFFIX, FragmentPlan, group_fragments
from feature_warehouse.core.identity import filter_to_identifiers, identifier_set
from feature_warehouse.core.loader import LoadReport, load_feature_definitions, load_partition
from feature_warehouse.core.union import union_fragments
from feature_warehouse.storage import TableCache

logger = structlog.get_logger(__name__)

FEATURES_SUFFIX = "_features"


@dataclass
class PartitionResult:
    """
    Outcome of running one partition.

    Attributes:
        partition: Partition name ('train' or 'test')
        prefix: Relation-name prefix of the partition
        load_report: Files loaded and skipped
        plan: Fragment grouping of the partition
        filtered: alias -> filtered relation name
        wide_table: Name of the materialized wide table
        row_count: Rows of the wide table (equals the base row count)
    """

    partition: str
    prefix: str
    load_report: LoadReport
    plan: FragmentPlan
    filtered: dict[str, str] = field(default_factory=dict)
    wide_table: str = ""
    row_count: int = 0


class FeaturePipeline:
    """
    Partition-level orchestration over one Catalog.

    Example:
        >>> config = load_pipeline_config()
        >>> with Catalog() as catalog:
        ...     pipeline = FeaturePipeline(config, catalog=catalog)
        ...     result = pipeline.run_partition("train")
        ...     typed, report = pipeline.coerce("train")
    """

    def __init__(
        self,
        config: dict[str, Any],
        catalog: Catalog | None = None,
        cache: TableCache | None = None,
    ):
        self.config = config
        self.catalog = catalog if catalog is not None else Catalog(config.get("database_path") or None)
        self.cache = cache
        self.selection = FeatureSelection.from_mapping(config.get("feature_selection") or {})
        self.type_rules = parse_type_rules(config.get("type_rules") or [])

    @property
    def identifier(self) -> str:
        return self.config["identifier"]

    @property
    def discriminators(self) -> list[str]:
        return list(self.config.get("discriminator_columns") or [])

    def base_table_name(self, prefix: str) -> str:
        return f"{prefix}_{self.config['base_table']}"

    def wide_table_name(self, prefix: str) -> str:
        return f"{prefix}{WIDE_SUFFIX}"

    def load(self, partition: str) -> LoadReport:
        """
        Load the partition's flat files into the catalog.

        Raises:
            FileNotFoundError: If the partition directory is missing
            TableNotFoundError: If no base label table was loaded
        """
        prefix = partition_prefix(self.config, partition)
        report = load_partition(self.catalog, partition_dir(self.config, partition), prefix)
        for failure in report.failures:
            logger.warning("load_failure", partition=partition, file=failure.path.name, error=failure.error)

        base = self.base_table_name(prefix)
        if not self.catalog.exists(base):
            raise TableNotFoundError(base, self.catalog.list_tables(prefix=f"{prefix}_"))
        return report

    def build_fragments(self, prefix: str) -> FragmentPlan:
        """Group fragments and materialize one `<key>_union` relation per group."""
        plan = group_fragments(self.catalog, prefix, exclude=(self.base_table_name(prefix),))
        for group in plan.groups.values():
            self.catalog.register(group.derived_name, union_fragments(self.catalog, group))
            logger.info(
                "union_materialized",
                table=group.derived_name,
                members=len(group.members),
                rows=self.catalog.row_count(group.derived_name),
            )
        return plan

    def filter_sources(self, plan: FragmentPlan) -> dict[str, str]:
        """
        Materialize the identifier set and one filtered relation per supplemental table.

        Every logical table of the plan is restricted to the cohort. A table
        without the identifier column is skipped unless the selection uses it.

        Returns:
            alias -> filtered relation name

        Raises:
            FeatureJoinError: If a selected alias matches no table
            MissingIdentifierError: If a selected table lacks the identifier
        """
        prefix = plan.prefix
        ids_name = f"{prefix}{IDENTIFIERS_SUFFIX}"
        ids = self.catalog.register(
            ids_name,
            identifier_set(self.catalog.table(self.base_table_name(prefix)), self.identifier),
        )

        selected = resolve_sources(plan, self.selection)
        sources = {name.removeprefix(f"{prefix}_"): plan.source_for(name) for name in plan.logical_tables()}

        filtered: dict[str, str] = {}
        for alias, source in sources.items():
            table = self.catalog.table(source)
            if alias not in selected and self.identifier not in table.columns:
                logger.warning("source_without_identifier_skipped", alias=alias, source=source)
                continue
            name = filtered_table_name(prefix, alias)
            expr = filter_to_identifiers(
                table,
                ids,
                self.identifier,
                discriminators=self.discriminators,
            )
            self.catalog.register(name, expr)
            filtered[alias] = name
            logger.debug("source_filtered", alias=alias, source=source, table=name)

        logger.info("sources_filtered", prefix=prefix, tables=len(filtered))
        return filtered

    def build_wide_table(self, prefix: str, filtered: dict[str, str]) -> str:
        """
        Materialize `<prefix>_wide` from the base table and the filtered relations.

        The row count is checked on the join expression, so a failed check
        leaves the store (including any earlier `<prefix>_wide`) untouched.

        Raises:
            FeatureJoinError: If the wide table does not have one row per base row
        """
        base_name = self.base_table_name(prefix)
        wide = feature_joiner.build_wide_table(
            self.catalog.table(base_name),
            {alias: self.catalog.table(name) for alias, name in filtered.items()},
            self.selection,
            self.identifier,
            exclude=self.discriminators,
        )

        name = self.wide_table_name(prefix)
        base_rows = self.catalog.row_count(base_name)
        wide_rows = int(wide.count().execute())
        if wide_rows != base_rows:
            logger.error("wide_table_row_mismatch", table=name, base_rows=base_rows, wide_rows=wide_rows)
            raise FeatureJoinError(
                f"Wide table '{name}' has {wide_rows:,} rows but base table '{base_name}' has {base_rows:,}; "
                f"a selected table holds more than one row per {self.identifier}"
            )
        self.catalog.register(name, wide)
        return name

    def run_partition(self, partition: str) -> PartitionResult:
        """Run every stage of one partition."""
        prefix = partition_prefix(self.config, partition)
        log = logger.bind(partition=partition, prefix=prefix)
        log.info("partition_started")

        report = self.load(partition)
        plan = self.build_fragments(prefix)
        filtered = self.filter_sources(plan)
        wide = self.build_wide_table(prefix, filtered)

        result = PartitionResult(
            partition=partition,
            prefix=prefix,
            load_report=report,
            plan=plan,
            filtered=filtered,
            wide_table=wide,
            row_count=self.catalog.row_count(wide),
        )
        log.info("partition_finished", wide_table=wide, rows=result.row_count)
        return result

    def run(self, partitions: tuple[str, ...] = PARTITIONS) -> dict[str, PartitionResult]:
        return {partition: self.run_partition(partition) for partition in partitions}

    def fetch_wide(self, partition: str) -> pl.DataFrame:
        """Collect a partition's wide table (run the partition first)."""
        return self.catalog.to_polars(self.wide_table_name(partition_prefix(self.config, partition)))

    def coerce(self, partition: str) -> tuple[pl.DataFrame, CoercionReport]:
        """Typed, model-ready version of a partition's wide table."""
        return coerce_wide_table(
            self.fetch_wide(partition),
            self.type_rules,
            reference_date=self.config.get("decision_date"),
            exclude=[self.identifier, self.config["target"]],
            drop_raw_dates=self.config.get("drop_raw_dates", True),
        )

    def export(self, partition: str) -> Path:
        """
        Save the typed wide table of a partition to the table cache.

        Raises:
            ValueError: If the pipeline has no cache
        """
        if self.cache is None:
            raise ValueError("No table cache configured; pass cache=TableCache(...)")

        typed, report = self.coerce(partition)
        prefix = partition_prefix(self.config, partition)
        path = self.cache.save(f"{prefix}{FEATURES_SUFFIX}", typed)
        logger.info("partition_exported", partition=partition, path=str(path), failed_values=report.failed_values)
        return path

    def describe_features(self, partition: str) -> pl.DataFrame:
        """
        Description of every wide-table column from the feature definitions file.

        Qualified columns (`<alias>__<column>`) are looked up by their source column.

        Raises:
            FileNotFoundError: If the definitions file is missing
        """
        definitions = load_feature_definitions(Path(self.config["data_root"]) / self.config["feature_definitions"])
        columns = self.catalog.table(self.wide_table_name(partition_prefix(self.config, partition))).columns
        described = definitions.describe_columns([col.split(QUALIFIER_SEPARATOR)[-1] for col in columns])
        return described.with_columns(pl.Series("column", list(columns)))
