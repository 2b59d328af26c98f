"""
Feature Joiner - flatten filtered supplemental relations into one wide table.

The wide table keeps every row of the base label table and adds, per selected
alias, one LEFT JOIN on the identifier. Join clauses are built from the
selection structure (one per alias), so a table is joined once however many
of its columns are selected.

Output columns:
- all base columns, unchanged
- each selected column under its own name, or `<alias>__<column>` when the
  name is also a base column or is selected from more than one alias
"""

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import ibis
import structlog

from feature_warehouse.core.fragments import FILTERED_SUFFIX, FragmentPlan

logger = structlog.get_logger(__name__)

QUALIFIER_SEPARATOR = "__"


class FeatureJoinError(ValueError):
    """Raised when a wide table cannot be built as requested."""


@dataclass
class FeatureSelection:
    """
    Columns wanted per supplemental table alias.

    Attributes:
        columns: alias -> column names; None selects every remaining column
    """

    columns: dict[str, tuple[str, ...] | None] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Sequence[str] | None]) -> "FeatureSelection":
        """Build from config: an empty or null column list means all remaining columns."""
        columns: dict[str, tuple[str, ...] | None] = {}
        for alias, cols in mapping.items():
            columns[alias] = tuple(dict.fromkeys(cols)) if cols else None
        return cls(columns=columns)

    @property
    def aliases(self) -> list[str]:
        return list(self.columns)

    def __bool__(self) -> bool:
        return bool(self.columns)


@dataclass(frozen=True)
class JoinSpec:
    """
    One LEFT JOIN of the wide table.

    Attributes:
        alias: Table alias from the selection
        outputs: (source column, output column) pairs
    """

    alias: str
    outputs: tuple[tuple[str, str], ...]

    @property
    def key_column(self) -> str:
        return f"{QUALIFIER_SEPARATOR}key_{self.alias}"


def filtered_table_name(prefix: str, alias: str) -> str:
    return f"{prefix}_{alias}{FILTERED_SUFFIX}"


def resolve_sources(
    plan: FragmentPlan,
    selection: FeatureSelection,
) -> dict[str, str]:
    """
    Map each alias to the relation holding all rows of `<prefix>_<alias>`.

    Raises:
        FeatureJoinError: If an alias matches neither a fragment group nor a table
    """
    sources: dict[str, str] = {}
    unknown: list[str] = []
    for alias in selection.aliases:
        source = plan.source_for(f"{plan.prefix}_{alias}")
        if source is None:
            unknown.append(alias)
        else:
            sources[alias] = source

    if unknown:
        raise FeatureJoinError(
            f"Unknown table alias(es) {unknown} for partition '{plan.prefix}'. "
            f"Available: {[t.removeprefix(plan.prefix + '_') for t in plan.logical_tables()]}"
        )
    return sources


def plan_feature_columns(
    base_columns: Sequence[str],
    source_columns: Mapping[str, Sequence[str]],
    selection: FeatureSelection,
    identifier: str,
    exclude: Sequence[str] = (),
) -> list[JoinSpec]:
    """
    Validate the selection against the filtered tables and assign output names.

    Args:
        base_columns: Columns of the base label table
        source_columns: alias -> columns of its filtered relation
        selection: Requested features
        identifier: Join key (never selected as a feature)
        exclude: Columns left out when an alias selects all remaining columns

    Returns:
        One JoinSpec per alias, in selection order

    Raises:
        FeatureJoinError: If a requested column is absent from its table
    """
    requested: dict[str, list[str]] = {}
    for alias, wanted in selection.columns.items():
        available = list(source_columns[alias])
        if wanted is None:
            skip = {identifier, *exclude}
            requested[alias] = [col for col in available if col not in skip]
            continue

        missing = [col for col in wanted if col not in available]
        if missing:
            raise FeatureJoinError(
                f"Column(s) {missing} not found in table '{alias}'. Available columns: {available}"
            )
        requested[alias] = [col for col in wanted if col != identifier]

    occurrences = Counter(col for cols in requested.values() for col in cols)
    base = set(base_columns)

    specs = []
    for alias, cols in requested.items():
        outputs = []
        for col in cols:
            if col in base or occurrences[col] > 1:
                outputs.append((col, f"{alias}{QUALIFIER_SEPARATOR}{col}"))
            else:
                outputs.append((col, col))
        specs.append(JoinSpec(alias=alias, outputs=tuple(outputs)))
    return specs


def build_wide_table(
    base: ibis.Table,
    sources: Mapping[str, ibis.Table],
    selection: FeatureSelection,
    identifier: str,
    exclude: Sequence[str] = (),
) -> ibis.Table:
    """
    Left-join every selected feature onto the base label table.

    Args:
        base: Base label table (one row per identifier)
        sources: alias -> filtered supplemental relation
        selection: Requested features
        identifier: Join key shared by every relation
        exclude: Columns left out when an alias selects all remaining columns

    Returns:
        Ibis expression for the wide table; every base row is preserved and
        features without a match are NULL

    Raises:
        FeatureJoinError: If the selection is empty, an alias has no source,
            or a requested column is missing
    """
    if not selection:
        raise FeatureJoinError("Feature selection is empty")
    if identifier not in base.columns:
        raise FeatureJoinError(f"Base table has no identifier column '{identifier}'")

    missing_sources = [alias for alias in selection.aliases if alias not in sources]
    if missing_sources:
        raise FeatureJoinError(f"No source relation for alias(es) {missing_sources}")

    specs = plan_feature_columns(
        base_columns=list(base.columns),
        source_columns={alias: list(sources[alias].columns) for alias in selection.aliases},
        selection=selection,
        identifier=identifier,
        exclude=exclude,
    )

    wide = base
    output_columns = list(base.columns)
    for spec in specs:
        source = sources[spec.alias]
        right = source.select(
            source[identifier].name(spec.key_column),
            *[source[col].name(out) for col, out in spec.outputs],
        )
        outs = [out for _, out in spec.outputs]
        wide = wide.left_join(right, wide[identifier] == right[spec.key_column]).select(*output_columns, *outs)
        output_columns.extend(outs)
        logger.debug("feature_join_added", alias=spec.alias, columns=len(outs))

    logger.info(
        "wide_table_built",
        joins=len(specs),
        features=len(output_columns) - len(base.columns),
        columns=len(output_columns),
    )
    return wide
