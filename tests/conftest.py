"""
Pytest configuration and fixtures for feature warehouse tests.
"""

import sys
from pathlib import Path

import polars as pl
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feature_warehouse.core.catalog import Catalog  # noqa: E402
from feature_warehouse.core.config_loader import PipelineConfigDefaults  # noqa: E402


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def catalog():
    """In-memory catalog, closed after the test."""
    with Catalog() as cat:
        yield cat


@pytest.fixture
def make_partition(tmp_path):
    """
    Factory fixture: write flat files of one partition under tmp_path.

    Usage:
        directory = make_partition("train", {"train_base": df, ...})
    """

    def _make(partition: str, tables: dict[str, pl.DataFrame], suffix: str = ".csv") -> Path:
        directory = tmp_path / "data" / "csv_files" / partition
        directory.mkdir(parents=True, exist_ok=True)
        for name, df in tables.items():
            path = directory / f"{name}{suffix}"
            if suffix == ".parquet":
                df.write_parquet(path)
            else:
                df.write_csv(path)
        return directory

    return _make


@pytest.fixture
def scenario_tables():
    """
    Two-identifier cohort with a fragmented supplemental table.

    Base: case_id 1, 2. Fragments t_2_1/t_2_2 hold ids 1, 2, 9 (9 is outside
    the cohort) with a num_group1 discriminator.
    """
    return {
        "t_base": pl.DataFrame({"case_id": [1, 2], "target": [0, 1]}),
        "t_2_1": pl.DataFrame({"case_id": [1, 1], "num_group1": [0, 1], "x": ["a", "b"]}),
        "t_2_2": pl.DataFrame({"case_id": [2, 9], "num_group1": [0, 0], "x": ["c", "z"]}),
    }


@pytest.fixture
def scenario_catalog(catalog, scenario_tables):
    """Catalog with the scenario tables registered."""
    for name, df in scenario_tables.items():
        catalog.register(name, df)
    return catalog


def _train_tables() -> dict[str, pl.DataFrame]:
    return {
        "train_base": pl.DataFrame(
            {
                "case_id": [1, 2, 3, 4],
                "date_decision": ["2020-01-10", "2020-02-01", "2020-03-15", "2020-04-01"],
                "target": [0, 1, 0, 1],
            }
        ),
        "train_static_0_0": pl.DataFrame(
            {
                "case_id": [1, 2],
                "annuity_780A": [1200.5, 800.0],
                "lastrejectdate_50D": ["2019-12-31", "2019-01-01"],
            }
        ),
        "train_static_0_1": pl.DataFrame(
            {
                "case_id": [3],
                "annuity_780A": [300],
                "lastrejectdate_50D": ["2020-03-05"],
            }
        ),
        "train_person_1": pl.DataFrame(
            {
                "case_id": [1, 1, 2, 5],
                "num_group1": [0, 1, 0, 0],
                "birth_259D": ["1980-01-10", "1950-05-05", "not a date", "1990-01-01"],
                "incometype_1044T": ["EMPLOYED", "RETIRED", "SALARIED", "EMPLOYED"],
            }
        ),
    }


def _test_tables() -> dict[str, pl.DataFrame]:
    return {
        "test_base": pl.DataFrame({"case_id": [10, 11], "date_decision": ["2021-01-01", "2021-02-01"]}),
        "test_static_0_0": pl.DataFrame(
            {
                "case_id": [10, 11],
                "annuity_780A": [500.0, 650.0],
                "lastrejectdate_50D": ["2020-12-01", "2020-11-01"],
            }
        ),
        "test_person_1": pl.DataFrame(
            {
                "case_id": [10, 11],
                "num_group1": [0, 0],
                "birth_259D": ["1985-03-03", "1975-07-07"],
                "incometype_1044T": ["EMPLOYED", "PENSIONER"],
            }
        ),
    }


@pytest.fixture
def pipeline_config(tmp_path, make_partition):
    """Config over a small train/test dataset written to tmp_path."""
    make_partition("train", _train_tables())
    make_partition("test", _test_tables())
    (tmp_path / "data" / "feature_definitions.csv").write_text(
        "Variable,Description\n"
        "annuity_780A,Monthly annuity amount.\n"
        "birth_259D,Date of birth of the person.\n"
    )

    config = PipelineConfigDefaults().to_dict()
    config.update(
        {
            "data_root": str(tmp_path / "data"),
            "cache_dir": str(tmp_path / "cache"),
            "feature_selection": {
                "static_0": ["annuity_780A", "lastrejectdate_50D"],
                "person_1": ["birth_259D", "incometype_1044T"],
            },
        }
    )
    return config
