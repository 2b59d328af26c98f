"""
Tests for type coercion of the wide table.
"""

from datetime import date

import polars as pl
import pytest

from feature_warehouse.core.coercion import (
    TypeRule,
    coerce_column,
    coerce_wide_table,
    parse_type_rules,
    resolve_column_kind,
)
from feature_warehouse.core.config_loader import _default_type_rules


@pytest.fixture
def rules():
    return parse_type_rules(_default_type_rules())


@pytest.fixture
def wide_frame():
    return pl.DataFrame(
        {
            "case_id": [1, 2, 3],
            "date_decision": ["2020-01-11", "2020-02-01", "2020-03-01"],
            "target": [0, 1, 0],
            "annuity_780A": ["1200.5", "n/a", None],
            "birth_259D": ["2020-01-01", "not a date", None],
            "education_1103M": ["a55475b1", None, "P97_36_170"],
            "incometype_1044T": ["EMPLOYED", "RETIRED", "EMPLOYED"],
        }
    )


class TestResolveColumnKind:
    @pytest.mark.parametrize(
        ("column", "kind"),
        [
            ("date_decision", "date"),
            ("birth_259D", "date"),
            ("education_1103M", "categorical"),
            ("incometype_1044T", "categorical"),
            ("annuity_780A", "numeric"),
            ("actualdpd_943P", "numeric"),
            ("numberofqueries_373L", "numeric"),
            ("case_id", None),
        ],
    )
    def test_default_rules_follow_suffix_convention(self, rules, column, kind):
        assert resolve_column_kind(column, rules) == kind

    def test_first_matching_rule_wins(self):
        # Arrange
        ordered = parse_type_rules([{"pattern": "amount_.*", "kind": "categorical"}, {"pattern": ".*A", "kind": "numeric"}])

        # Act & Assert
        assert resolve_column_kind("amount_1A", ordered) == "categorical"

    def test_unknown_kind_raises_valueerror(self):
        with pytest.raises(ValueError, match="Unknown column kind"):
            TypeRule.from_mapping({"pattern": ".*", "kind": "text"})


class TestCoerceColumn:
    def test_numeric_unparsable_values_become_null_and_are_counted(self):
        # Act
        coerced, failed = coerce_column(pl.Series("annuity_780A", ["1.5", " 2 ", "abc", None]), "numeric")

        # Assert
        assert coerced.dtype == pl.Float64
        assert coerced.to_list() == [1.5, 2.0, None, None]
        assert failed == 1

    def test_date_parses_iso_strings(self):
        # Act
        coerced, failed = coerce_column(pl.Series("birth_259D", ["1980-01-10", "garbage"]), "date")

        # Assert
        assert coerced.dtype == pl.Date
        assert coerced.to_list() == [date(1980, 1, 10), None]
        assert failed == 1

    def test_categorical_cast_never_fails(self):
        # Act
        coerced, failed = coerce_column(pl.Series("status_1M", ["a", None, "b"]), "categorical")

        # Assert
        assert coerced.dtype == pl.Categorical
        assert failed == 0


class TestCoerceWideTable:
    """Whole-table coercion with the default type map."""

    def test_coerce_wide_table_derives_day_offsets_and_drops_dates(self, wide_frame, rules):
        # Act
        typed, report = coerce_wide_table(
            wide_frame, rules, reference_date="date_decision", exclude=["case_id", "target"]
        )

        # Assert
        assert "birth_259D" not in typed.columns
        assert "date_decision" not in typed.columns
        assert typed["birth_259D_days"].to_list() == [10, None, None]
        assert report.derived == ["birth_259D_days"]
        assert set(report.dropped) == {"date_decision", "birth_259D"}

    def test_coerce_wide_table_reports_failures_without_raising(self, wide_frame, rules):
        # Act
        typed, report = coerce_wide_table(
            wide_frame, rules, reference_date="date_decision", exclude=["case_id", "target"]
        )

        # Assert
        failures = {issue.column: issue.failed_count for issue in report.issues}
        assert failures == {"annuity_780A": 1, "birth_259D": 1}
        assert report.failed_values == 2
        assert typed["annuity_780A"].to_list() == [1200.5, None, None]

    def test_coerce_wide_table_leaves_excluded_columns_untouched(self, wide_frame, rules):
        # Act
        typed, report = coerce_wide_table(wide_frame, rules, reference_date="date_decision", exclude=["case_id", "target"])

        # Assert
        assert typed["target"].dtype == pl.Int64
        assert "target" not in report.kinds
        assert typed["education_1103M"].dtype == pl.Categorical

    def test_coerce_wide_table_keep_raw_dates(self, wide_frame, rules):
        # Act
        typed, _ = coerce_wide_table(wide_frame, rules, reference_date="date_decision", drop_raw_dates=False)

        # Assert
        assert typed["birth_259D"].dtype == pl.Date
        assert "birth_259D_days" in typed.columns

    def test_coerce_wide_table_without_reference_date_keeps_raw_dates(self, wide_frame, rules):
        """With no offsets derived, the raw date columns are the only date information left."""
        # Act
        typed, report = coerce_wide_table(wide_frame.drop("date_decision"), rules, reference_date="date_decision")

        # Assert
        assert report.derived == []
        assert report.dropped == []
        assert typed["birth_259D"].dtype == pl.Date

    def test_coerce_wide_table_reference_date_only_is_kept(self, wide_frame, rules):
        # Act
        typed, report = coerce_wide_table(
            wide_frame.select("case_id", "date_decision", "annuity_780A"), rules, reference_date="date_decision"
        )

        # Assert
        assert report.derived == []
        assert report.dropped == []
        assert typed["date_decision"].dtype == pl.Date
