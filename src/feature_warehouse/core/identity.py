"""
Identity Filter - restrict supplemental relations to the base cohort.

Rows are kept when their identifier appears in the base label table. Tables
that carry sub-row discriminators (`num_group1`, `num_group2`) hold several
rows per identifier; only the primary row (discriminator value 0) is kept
unless the caller asks for the full history.
"""

from collections.abc import Sequence

import ibis
import structlog
from ibis import _

logger = structlog.get_logger(__name__)

PRIMARY_ROW = 0


class MissingIdentifierError(KeyError):
    """Raised when a relation lacks the identifier column used as join key."""


def identifier_set(base: ibis.Table, identifier: str) -> ibis.Table:
    """Distinct identifiers of the base label table."""
    if identifier not in base.columns:
        raise MissingIdentifierError(f"Base table has no identifier column '{identifier}'")
    return base.select(identifier).distinct()


def discriminators_of(table: ibis.Table, discriminators: Sequence[str]) -> list[str]:
    """Discriminator columns the table actually declares, in the configured order."""
    return [col for col in discriminators if col in table.columns]


def filter_to_identifiers(
    table: ibis.Table,
    identifiers: ibis.Table,
    identifier: str,
    discriminators: Sequence[str] = (),
    keep_history: bool = False,
) -> ibis.Table:
    """
    Keep the rows of `table` whose identifier is in `identifiers`.

    Implemented as a semi-join: inner-join semantics on identifier equality
    without bringing any right-side column into the output. For every
    discriminator column present in the table, rows are further restricted to
    the primary row (value 0), unless `keep_history` is set.

    Args:
        table: Supplemental relation (original or unioned)
        identifiers: Distinct identifier relation (see `identifier_set`)
        identifier: Join key column name
        discriminators: Candidate sub-row discriminator columns
        keep_history: Keep every sub-row instead of the primary one

    Returns:
        Ibis expression with exactly the columns of `table`

    Raises:
        MissingIdentifierError: If `table` lacks the identifier column
    """
    if identifier not in table.columns:
        raise MissingIdentifierError(f"Table has no identifier column '{identifier}' (columns: {list(table.columns)})")

    columns = list(table.columns)
    filtered = table.semi_join(identifiers, identifier)

    present = discriminators_of(table, discriminators)
    if present and not keep_history:
        filtered = filtered.filter(*[_[col] == PRIMARY_ROW for col in present])

    logger.debug(
        "identity_filter_built",
        identifier=identifier,
        discriminators=present,
        keep_history=keep_history,
    )
    return filtered.select(*columns)
