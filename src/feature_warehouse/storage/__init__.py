"""Storage module for the on-disk cache of derived tables."""

from feature_warehouse.storage.table_cache import TableCache

__all__ = ["TableCache"]
