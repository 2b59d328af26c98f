"""
Catalog Loader - flat files of one partition into catalog relations.

Each source file becomes one relation named by its (sanitized) file stem.
Files that cannot be parsed are reported and skipped; loading the remaining
files continues.
"""

from dataclasses import dataclass, field
from pathlib import Path

import polars as pl
import structlog

from feature_warehouse.core.catalog import Catalog, sanitize_table_name

logger = structlog.get_logger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".parquet")

# Rows scanned by Polars before fixing a column's type
SCHEMA_INFERENCE_ROWS = 10_000


@dataclass
class LoadFailure:
    """A source file that could not be loaded."""

    path: Path
    error: str


@dataclass
class LoadReport:
    """
    Outcome of loading one partition directory.

    Attributes:
        directory: Directory that was scanned
        loaded: Relation names registered, in load order
        failures: Files that were skipped, with the reason
    """

    directory: Path
    loaded: list[str] = field(default_factory=list)
    failures: list[LoadFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        lines = [f"Loaded {len(self.loaded)} tables from {self.directory}"]
        for failure in self.failures:
            lines.append(f"  skipped {failure.path.name}: {failure.error}")
        return "\n".join(lines)


def discover_source_files(directory: Path, prefix: str) -> list[Path]:
    """List `<prefix>_*` flat files in a directory, sorted by name."""
    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.name.startswith(f"{prefix}_") and path.suffix.lower() in SUPPORTED_SUFFIXES
    )


def read_source_file(path: Path) -> pl.DataFrame:
    """
    Read one flat file into an eager DataFrame.

    A CSV whose inferred types break further down the file is re-read with
    every column as string; later stages widen or coerce those columns.

    Raises:
        ValueError: If the file has no columns
        polars.exceptions.PolarsError: If the file is not valid tabular data
    """
    if path.suffix.lower() == ".parquet":
        df = pl.read_parquet(path)
    else:
        try:
            df = pl.read_csv(path, infer_schema_length=SCHEMA_INFERENCE_ROWS)
        except pl.exceptions.ComputeError as e:
            logger.warning("schema_inference_failed", path=str(path), error=str(e))
            # Fallback: read with all columns as strings
            df = pl.read_csv(path, infer_schema_length=0)

    if df.width == 0:
        raise ValueError("file has no columns")
    return df


def load_partition(catalog: Catalog, directory: Path | str, prefix: str) -> LoadReport:
    """
    Load every `<prefix>_*` file of a directory into the catalog.

    Args:
        catalog: Destination catalog (existing relations of the same name are replaced)
        directory: Partition directory
        prefix: File-name prefix of the partition (e.g. "train")

    Returns:
        LoadReport listing loaded relations and skipped files

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Partition directory not found: {directory}")

    report = LoadReport(directory=directory)
    for path in discover_source_files(directory, prefix):
        table_name = sanitize_table_name(path.stem)
        try:
            df = read_source_file(path)
        except (pl.exceptions.PolarsError, OSError, ValueError) as e:
            logger.warning("source_file_skipped", path=str(path), error=str(e))
            report.failures.append(LoadFailure(path=path, error=str(e)))
            continue

        catalog.register(table_name, df)
        report.loaded.append(table_name)

    logger.info(
        "partition_loaded",
        directory=str(directory),
        prefix=prefix,
        tables=len(report.loaded),
        failures=len(report.failures),
    )
    return report


@dataclass
class FeatureDictionary:
    """
    Column descriptions from the auxiliary definitions file.

    Attributes:
        column_descriptions: Dict mapping column names to descriptions
        source_file: Path the descriptions were read from
    """

    column_descriptions: dict[str, str] = field(default_factory=dict)
    source_file: Path | None = None

    def get_description(self, column: str) -> str | None:
        """Get description for a column, case-insensitive."""
        col_lower = column.lower()
        for key, value in self.column_descriptions.items():
            if key.lower() == col_lower:
                return value
        return None

    def describe_columns(self, columns: list[str]) -> pl.DataFrame:
        """Frame of (column, description) for the given columns; unknown columns get null."""
        return pl.DataFrame(
            {
                "column": columns,
                "description": [self.get_description(col) for col in columns],
            },
            schema={"column": pl.Utf8, "description": pl.Utf8},
        )


def load_feature_definitions(path: Path | str) -> FeatureDictionary:
    """
    Load the column-description file (first column: name, second: description).

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has fewer than two columns
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature definitions not found: {path}")

    df = pl.read_csv(path, infer_schema_length=0)
    if df.width < 2:
        raise ValueError(f"Feature definitions need a name and a description column, got {df.columns}")

    name_col, desc_col = df.columns[0], df.columns[1]
    descriptions = {
        row[name_col]: row[desc_col]
        for row in df.select(name_col, desc_col).iter_rows(named=True)
        if row[name_col] is not None
    }

    logger.info("feature_definitions_loaded", path=str(path), columns=len(descriptions))
    return FeatureDictionary(column_descriptions=descriptions, source_file=path)
