"""
Union Materializer - reassemble a fragment group into one relation.

`union_fragments` is pure: it returns an Ibis UNION ALL expression over the
group members and never checks or mutates the store. Materialization (with
replace semantics) is the pipeline driver's job, so re-running is idempotent.
"""

import ibis
import ibis.expr.datatypes as dt
import structlog

from feature_warehouse.core.catalog import Catalog
from feature_warehouse.core.fragments import FragmentGroup, SchemaMismatchError

logger = structlog.get_logger(__name__)


def _common_type(dtypes: list[dt.DataType]) -> dt.DataType:
    """Type every member can be cast to without losing rows."""
    first = dtypes[0]
    if all(d == first for d in dtypes):
        return first
    if all(d.is_numeric() or d.is_null() for d in dtypes):
        return dt.float64
    return dt.string


def align_members(tables: dict[str, ibis.Table], key: str) -> list[ibis.Table]:
    """
    Project every member onto the first member's column order and a common type per column.

    Raises:
        SchemaMismatchError: If members do not share the same column names
    """
    names = list(tables)
    reference = tables[names[0]]
    columns = list(reference.columns)

    for name in names[1:]:
        other = list(tables[name].columns)
        if set(other) != set(columns):
            missing = sorted(set(columns) - set(other))
            extra = sorted(set(other) - set(columns))
            raise SchemaMismatchError(
                key,
                f"'{name}' columns differ from '{names[0]}' (missing={missing}, extra={extra})",
            )

    schemas = {name: table.schema() for name, table in tables.items()}
    target_types = {col: _common_type([schemas[name][col] for name in names]) for col in columns}

    widened = [col for col in columns if any(schemas[name][col] != target_types[col] for name in names)]
    if widened:
        logger.warning("fragment_types_widened", group=key, columns=widened)

    aligned = []
    for name in names:
        table = tables[name]
        projections = [
            table[col] if schemas[name][col] == target_types[col] else table[col].cast(target_types[col]).name(col)
            for col in columns
        ]
        aligned.append(table.select(*projections))
    return aligned


def union_fragments(catalog: Catalog, group: FragmentGroup) -> ibis.Table:
    """
    UNION ALL of every member of a fragment group, in fragment order.

    Duplicate rows are preserved; the row count of the result is the sum of
    the member row counts.

    Args:
        catalog: Catalog holding the member relations
        group: Fragment group to reassemble

    Returns:
        Ibis table expression (lazy)

    Raises:
        SchemaMismatchError: If members do not share the same columns
    """
    tables = {member: catalog.table(member) for member in group.members}
    aligned = align_members(tables, group.key)

    if len(aligned) == 1:
        return aligned[0]
    return ibis.union(*aligned, distinct=False)
