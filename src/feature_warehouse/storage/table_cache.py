"""
TableCache Class - On-disk Parquet cache of derived tables

Keeps derived tables (wide tables, typed feature tables) across process runs.

INVARIANT:
    One file per table name: {cache_dir}/{sanitized_table_name}.parquet
    Saving a name overwrites the previous file unconditionally.

No invalidation policy: a cached table is whatever was last saved under its name.
"""

import logging
from pathlib import Path

import polars as pl

from feature_warehouse.core.catalog import sanitize_table_name

logger = logging.getLogger(__name__)


class TableCache:
    """
    Parquet files keyed by table name.

    Boundary: writes are eager, `scan` returns a LazyFrame for deferred reads.
    """

    def __init__(self, cache_dir: Path | str):
        """
        Args:
            cache_dir: Directory holding the cached tables (created if missing)
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Initialized TableCache at {self.cache_dir}")

    def path_for(self, table_name: str) -> Path:
        return self.cache_dir / f"{sanitize_table_name(table_name)}.parquet"

    def save(self, table_name: str, data: pl.DataFrame) -> Path:
        """
        Write a table to the cache, replacing any previous version.

        Args:
            table_name: Cache key
            data: Eager Polars DataFrame (collect LazyFrames first)

        Returns:
            Path of the written Parquet file
        """
        if isinstance(data, pl.LazyFrame):
            raise TypeError("TableCache.save requires a materialized DataFrame, not LazyFrame")

        path = self.path_for(table_name)
        tmp_path = path.with_suffix(".parquet.tmp")
        data.write_parquet(tmp_path, compression="snappy")
        tmp_path.replace(path)

        logger.info(f"Cached table '{table_name}' ({data.height:,} rows) at {path}")
        return path

    def exists(self, table_name: str) -> bool:
        return self.path_for(table_name).exists()

    def load(self, table_name: str) -> pl.DataFrame:
        """
        Read a cached table.

        Raises:
            FileNotFoundError: If nothing was cached under that name
        """
        return self.scan(table_name).collect()

    def scan(self, table_name: str) -> pl.LazyFrame:
        """
        Lazily scan a cached table.

        Raises:
            FileNotFoundError: If nothing was cached under that name
        """
        path = self.path_for(table_name)
        if not path.exists():
            raise FileNotFoundError(f"No cached table '{table_name}' at {path}")

        logger.debug(f"Scanning cached table '{table_name}' from {path}")
        return pl.scan_parquet(path)

    def list_tables(self) -> list[str]:
        """Names of the cached tables (sanitized form)."""
        return sorted(path.stem for path in self.cache_dir.glob("*.parquet"))
