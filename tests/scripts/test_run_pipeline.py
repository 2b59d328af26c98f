"""
Tests for scripts/run_pipeline.py (command-line runner).
"""

import importlib.util
from pathlib import Path

import pytest
import yaml


@pytest.fixture(scope="module")
def run_pipeline(project_root):
    """Import the runner script as a module."""
    spec = importlib.util.spec_from_file_location("run_pipeline", project_root / "scripts" / "run_pipeline.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def config_path(pipeline_config, tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.dump(pipeline_config))
    return path


class TestRunPipelineScript:
    def test_parse_args_collects_repeated_partitions(self, run_pipeline):
        # Act
        args = run_pipeline.parse_args(["--partition", "train", "--partition", "test", "--export"])

        # Assert
        assert args.partition == ["train", "test"]
        assert args.export is True
        assert args.train_model is False

    def test_main_builds_and_exports_wide_tables(self, run_pipeline, config_path, pipeline_config, capsys):
        # Act
        exit_code = run_pipeline.main(["--config", str(config_path), "--export"])

        # Assert
        assert exit_code == 0
        output = capsys.readouterr().out
        assert "train: train_wide (4 rows)" in output
        assert "test: test_wide (2 rows)" in output
        cache_dir = Path(pipeline_config["cache_dir"])
        assert (cache_dir / "train_features.parquet").exists()
        assert (cache_dir / "test_features.parquet").exists()

    def test_main_train_model_requires_train_partition(self, run_pipeline, config_path, capsys):
        # Act
        exit_code = run_pipeline.main(["--config", str(config_path), "--partition", "test", "--train-model"])

        # Assert
        assert exit_code == 2
        assert "needs the train partition" in capsys.readouterr().err
