"""
Catalog - Named relations in a DuckDB store, addressed through Ibis.

Replaces a process-wide table registry with an explicit object that every
pipeline stage receives. Loaded tables and derived tables (unions, filtered
tables, wide tables) live side by side as DuckDB relations.

Boundary: registration is eager (DuckDB writes), lookups are lazy (Ibis
expressions, no SQL executed until collected).
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import ibis
import polars as pl

logger = logging.getLogger(__name__)

# SQL identifier validation pattern: must start with letter or underscore,
# followed by letters, digits, or underscores
_SQL_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TableNotFoundError(KeyError):
    """Raised when a relation is looked up that the catalog does not hold."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        preview = ", ".join(available[:20])
        super().__init__(f"Table '{name}' not found in catalog. Available tables: {preview}")


def sanitize_table_name(name: str) -> str:
    """
    Sanitize a file stem to a SQL-safe identifier.

    Replaces spaces, hyphens, and special characters with underscores.
    Ensures identifier starts with letter/underscore (not number).

    Args:
        name: Original table name (can contain spaces, hyphens, etc.)

    Returns:
        SQL-safe identifier (e.g., "train_applprev_1_0")
    """
    sanitized = re.sub(r"[^0-9a-zA-Z_]+", "_", name).strip("_").lower()

    if not sanitized or sanitized[0].isdigit():
        sanitized = f"t_{sanitized}" if sanitized else "t"

    return sanitized


def validate_table_identifier(name: str) -> str:
    """
    Validate table identifier against SQL identifier pattern. Fail closed.

    Args:
        name: Table identifier to validate

    Returns:
        The validated name (unchanged if valid)

    Raises:
        ValueError: If identifier is invalid (contains special chars, etc.)
    """
    if not name or not _SQL_IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid table identifier '{name}': must match {_SQL_IDENTIFIER_PATTERN.pattern}")
    return name


@dataclass(frozen=True)
class ColumnInfo:
    """One column of a relation: name and declared type."""

    name: str
    dtype: str


@dataclass(frozen=True)
class TableInfo:
    """
    Schema of one relation in the catalog.

    Attributes:
        name: Relation name
        columns: Ordered columns with declared types
    """

    name: str
    columns: tuple[ColumnInfo, ...]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def column_count(self) -> int:
        return len(self.columns)

    def dtype_of(self, column: str) -> str:
        for col in self.columns:
            if col.name == column:
                return col.dtype
        raise KeyError(f"Column '{column}' not in table '{self.name}'")


class Catalog:
    """
    Registry of named relations backed by one DuckDB connection.

    Registration has overwrite semantics: registering an existing name
    replaces its content. There is exactly one writer per catalog.

    Example:
        >>> with Catalog() as catalog:
        ...     catalog.register("train_base", pl.DataFrame({"case_id": [1, 2]}))
        ...     catalog.describe("train_base").column_names
        ['case_id']
    """

    def __init__(self, database_path: Path | str | None = None):
        """
        Open the backing DuckDB store.

        Args:
            database_path: DuckDB file (created if missing). None or "" keeps
                the store in memory.
        """
        if database_path:
            self.database_path: Path | None = Path(database_path)
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.con = ibis.duckdb.connect(database=str(self.database_path))
            logger.info(f"Opened catalog with persistent DuckDB at {self.database_path}")
        else:
            self.database_path = None
            self.con = ibis.duckdb.connect()
            logger.debug("Opened in-memory catalog")

    def register(self, name: str, data: pl.DataFrame | ibis.Table) -> ibis.Table:
        """
        Create or replace a relation.

        Args:
            name: Relation name (must be a plain SQL identifier)
            data: Eager Polars DataFrame or an Ibis expression over this catalog

        Returns:
            Ibis table expression for the registered relation
        """
        validate_table_identifier(name)
        table = self.con.create_table(name, obj=data, overwrite=True)
        if isinstance(data, pl.DataFrame):
            logger.info(f"Registered table '{name}' ({data.height:,} rows, {data.width} columns)")
        else:
            logger.info(f"Materialized derived table '{name}'")
        return table

    def exists(self, name: str) -> bool:
        return name in self.con.list_tables()

    def table(self, name: str) -> ibis.Table:
        """
        Look up a relation as a lazy Ibis expression.

        Raises:
            TableNotFoundError: If the catalog holds no relation of that name
        """
        tables = self.list_tables()
        if name not in tables:
            raise TableNotFoundError(name, tables)
        return self.con.table(name)

    def list_tables(self, prefix: str | None = None) -> list[str]:
        """List relation names, optionally restricted to a name prefix."""
        names = sorted(self.con.list_tables())
        if prefix is not None:
            names = [n for n in names if n.startswith(prefix)]
        return names

    def describe(self, name: str) -> TableInfo:
        """Column list and per-column declared type of one relation."""
        schema = self.table(name).schema()
        columns = tuple(ColumnInfo(name=col, dtype=str(dtype)) for col, dtype in schema.items())
        return TableInfo(name=name, columns=columns)

    def describe_all(self, names: list[str] | None = None) -> dict[str, TableInfo]:
        """Describe several relations (all of them when names is None)."""
        if names is None:
            names = self.list_tables()
        return {name: self.describe(name) for name in names}

    def row_count(self, name: str) -> int:
        return int(self.table(name).count().execute())

    def drop(self, name: str) -> None:
        """Drop a relation if it exists."""
        validate_table_identifier(name)
        self.con.drop_table(name, force=True)
        logger.debug(f"Dropped table '{name}'")

    def to_polars(self, name: str) -> pl.DataFrame:
        """Collect a relation into an eager Polars DataFrame (IO boundary)."""
        return self.table(name).to_polars()

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self.con is not None:
            self.con.disconnect()
            self.con = None
            logger.debug("Closed catalog connection")

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
