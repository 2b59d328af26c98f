"""
Type Coercion - turn the wide table into model-ready column types.

A declarative type map assigns each column a kind from its name:

    numeric      -> Float64, unparsable values become null
    categorical  -> Categorical
    date         -> Date, unparsable values become null; paired with the
                    reference (decision) date to derive `<column>_days`

Parse failures are counted per column and reported, never raised.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

import polars as pl

logger = logging.getLogger(__name__)

ColumnKind = Literal["numeric", "categorical", "date"]
COLUMN_KINDS: tuple[str, ...] = ("numeric", "categorical", "date")

DAYS_SUFFIX = "_days"
DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class TypeRule:
    """Column-name pattern mapped to a kind. Patterns use re.fullmatch."""

    pattern: re.Pattern
    kind: ColumnKind

    @classmethod
    def from_mapping(cls, rule: Mapping[str, str]) -> "TypeRule":
        kind = rule["kind"]
        if kind not in COLUMN_KINDS:
            raise ValueError(f"Unknown column kind '{kind}' for pattern '{rule['pattern']}'. Choose from: {COLUMN_KINDS}")
        return cls(pattern=re.compile(rule["pattern"]), kind=kind)  # type: ignore[arg-type]


def parse_type_rules(rules: Sequence[Mapping[str, str]]) -> list[TypeRule]:
    return [TypeRule.from_mapping(rule) for rule in rules]


def resolve_column_kind(column: str, rules: Sequence[TypeRule]) -> ColumnKind | None:
    """Kind of the first rule whose pattern matches the column name."""
    for rule in rules:
        if rule.pattern.fullmatch(column):
            return rule.kind
    return None


@dataclass
class CoercionIssue:
    """Values of one column that could not be parsed under its kind."""

    column: str
    kind: ColumnKind
    failed_count: int


@dataclass
class CoercionReport:
    kinds: dict[str, ColumnKind] = field(default_factory=dict)
    issues: list[CoercionIssue] = field(default_factory=list)
    derived: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def failed_values(self) -> int:
        return sum(issue.failed_count for issue in self.issues)


def _coerce_expr(column: str, kind: ColumnKind, dtype: pl.DataType) -> pl.Expr:
    col = pl.col(column)
    if kind == "numeric":
        if dtype.is_numeric():
            return col.cast(pl.Float64)
        return col.cast(pl.Utf8).str.strip_chars().cast(pl.Float64, strict=False)
    if kind == "categorical":
        return col.cast(pl.Utf8).cast(pl.Categorical)
    if dtype == pl.Date:
        return col
    if dtype.is_temporal():
        return col.cast(pl.Date)
    return col.cast(pl.Utf8).str.strip_chars().str.to_date(DATE_FORMAT, strict=False)


def coerce_column(series: pl.Series, kind: ColumnKind) -> tuple[pl.Series, int]:
    """
    Coerce one column.

    Returns:
        (coerced series, number of non-null values that became null)
    """
    coerced = series.to_frame().select(_coerce_expr(series.name, kind, series.dtype)).to_series()
    failed = int((series.is_not_null() & coerced.is_null()).sum())
    return coerced, failed


def coerce_wide_table(
    df: pl.DataFrame,
    rules: Sequence[TypeRule],
    reference_date: str | None = None,
    exclude: Sequence[str] = (),
    drop_raw_dates: bool = True,
) -> tuple[pl.DataFrame, CoercionReport]:
    """
    Apply the type map to every column of a wide table.

    Args:
        df: Wide table (eager)
        rules: Ordered type rules; first match wins, unmatched columns are left as-is
        reference_date: Date column each other date column is measured against
        exclude: Columns never coerced (identifier, target)
        drop_raw_dates: Drop date columns once their day offsets are derived

    Returns:
        (typed DataFrame, CoercionReport)
    """
    report = CoercionReport()
    skip = set(exclude)
    coerced_columns: list[pl.Series] = []

    for name in df.columns:
        series = df.get_column(name)
        kind = None if name in skip else resolve_column_kind(name, rules)
        if kind is None:
            coerced_columns.append(series)
            continue

        report.kinds[name] = kind
        coerced, failed = coerce_column(series, kind)
        if failed:
            report.issues.append(CoercionIssue(column=name, kind=kind, failed_count=failed))
            logger.warning(f"Column '{name}': {failed:,} value(s) could not be parsed as {kind}, set to null")
        coerced_columns.append(coerced)

    typed = pl.DataFrame(coerced_columns)

    date_columns = [name for name, kind in report.kinds.items() if kind == "date"]
    offset_sources: list[str] = []
    if reference_date is not None and reference_date in date_columns:
        offset_sources = [name for name in date_columns if name != reference_date]
        if offset_sources:
            typed = typed.with_columns(
                [
                    (pl.col(reference_date) - pl.col(name)).dt.total_days().alias(f"{name}{DAYS_SUFFIX}")
                    for name in offset_sources
                ]
            )
            report.derived.extend(f"{name}{DAYS_SUFFIX}" for name in offset_sources)
    elif date_columns:
        logger.warning(f"Reference date '{reference_date}' not available, no day offsets derived")

    # Raw dates are dropped only together with their derived offsets
    if drop_raw_dates and offset_sources:
        to_drop = [reference_date, *offset_sources]
        typed = typed.drop(to_drop)
        report.dropped.extend(to_drop)

    logger.info(
        f"Coerced {len(report.kinds)} columns ({len(report.derived)} derived, "
        f"{len(report.issues)} with parse failures)"
    )
    return typed, report
