"""Centralized configuration loader for the YAML-based pipeline configuration.

This module provides functions to load configuration from YAML files with:
- Environment variable overrides (env var → YAML → defaults)
- Type coercion (string to float, bool, int)
- Schema validation using dataclasses
- Graceful degradation (missing files use defaults)
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore

logger = logging.getLogger(__name__)

PARTITIONS = ("train", "test")
ENV_PREFIX = "FEATURE_WAREHOUSE_"


def get_project_root() -> Path:
    """
    Repository root, located from this file's position under src/.

    Raises:
        ValueError: If no config/ directory sits at that root
    """
    project_root = Path(__file__).resolve().parents[3]
    config_dir = project_root / "config"
    if not config_dir.is_dir():
        raise ValueError(f"No config/ directory at {project_root}; pass explicit paths instead")
    return project_root


def _coerce_type(value: Any, target_type: type) -> Any:
    """Convert an override value (usually an env var string) to the type of its default."""
    if value is None:
        return None

    if isinstance(value, target_type):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))
        return int(value)

    if target_type is str:
        return str(value)

    if target_type in (list, dict):
        raise TypeError(f"expected {target_type.__name__}, got {type(value).__name__}")

    return value


def _get_env_var(key: str, default: Any = None) -> str | None:
    """Get environment variable value."""
    return os.getenv(key, default)


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Supports two modes:
    1. Explicit mapping: env_mapping provides env var name → config key mapping
    2. Automatic mapping: FEATURE_WAREHOUSE_ + config key (uppercase) overrides

    Only scalar keys are overridable; lists and mappings stay YAML-only.

    Args:
        config: Configuration dictionary
        env_mapping: Optional mapping of env var names to config keys

    Returns:
        Config with env var overrides applied
    """
    result = config.copy()
    overridden: set[str] = set()

    if env_mapping:
        for env_key, config_key in env_mapping.items():
            env_value = _get_env_var(env_key)
            if env_value is None or config_key not in result:
                continue
            target_type = type(result[config_key])
            try:
                result[config_key] = _coerce_type(env_value, target_type)
                overridden.add(config_key)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    for config_key, current in config.items():
        if config_key in overridden or isinstance(current, (list, dict)):
            continue
        env_key = f"{ENV_PREFIX}{config_key.upper()}"
        env_value = _get_env_var(env_key)
        if env_value is not None:
            target_type = type(current)
            try:
                result[config_key] = _coerce_type(env_value, target_type)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")

    return result


def _default_type_rules() -> list[dict[str, str]]:
    return [
        {"pattern": "^date_decision$", "kind": "date"},
        {"pattern": ".*D$", "kind": "date"},
        {"pattern": ".*[MT]$", "kind": "categorical"},
        {"pattern": ".*[APL]$", "kind": "numeric"},
    ]


def _default_model_config() -> dict[str, Any]:
    return {
        "kind": "hist_gradient_boosting",
        "validation_fraction": 0.2,
        "random_state": 42,
        "max_iter": 200,
        "max_depth": 8,
        "learning_rate": 0.05,
        "n_estimators": 300,
    }


@dataclass
class PipelineConfigDefaults:
    """Default values for pipeline configuration."""

    data_root: str = "data/raw"
    train_dir: str = "csv_files/train"
    test_dir: str = "csv_files/test"
    train_prefix: str = "train"
    test_prefix: str = "test"
    base_table: str = "base"
    identifier: str = "case_id"
    target: str = "target"
    decision_date: str = "date_decision"
    discriminator_columns: list[str] = field(default_factory=lambda: ["num_group1", "num_group2"])
    feature_definitions: str = "feature_definitions.csv"
    database_path: str = ""
    cache_dir: str = "data/cache"
    feature_selection: dict[str, list[str]] = field(default_factory=dict)
    type_rules: list[dict[str, str]] = field(default_factory=_default_type_rules)
    drop_raw_dates: bool = True
    model: dict[str, Any] = field(default_factory=_default_model_config)
    log_level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return asdict(self)


def _is_critical_config(key: str) -> bool:
    """Structural keys whose wrong type would silently produce a wrong wide table."""
    return key in {"identifier", "base_table", "discriminator_columns", "feature_selection", "type_rules"}


def load_pipeline_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load pipeline config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses config/pipeline.yaml
            under the project root.

    Returns:
        dict with the keys of PipelineConfigDefaults

    Raises:
        ValueError: If YAML is invalid or a structural key has the wrong type
    """
    defaults = PipelineConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_project_root() / "config" / "pipeline.yaml"
    config_path = Path(config_path)

    config = defaults.copy()
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        for key, value in yaml_data.items():
            if key not in defaults:
                logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
                continue
            target_type = type(defaults[key])
            try:
                coerced = _coerce_type(value, target_type)
            except (ValueError, TypeError) as e:
                if _is_critical_config(key):
                    raise ValueError(
                        f"Type coercion failed for critical config {key}={value!r}: "
                        f"expected {target_type.__name__}, got {type(value).__name__}. "
                        f"Error: {e}"
                    ) from e
                logger.warning(
                    f"Failed to coerce YAML value {key}={value} to {target_type.__name__}: {e}, using default"
                )
                continue
            if coerced is None:
                continue
            if key == "model":
                coerced = {**defaults["model"], **coerced}
            config[key] = coerced
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"Config file not found at {config_path}, using defaults")

    env_mapping = {
        "FEATURE_WAREHOUSE_DB": "database_path",
        "FEATURE_WAREHOUSE_DATA": "data_root",
    }

    return _apply_env_overrides(config, env_mapping)


def partition_prefix(config: dict[str, Any], partition: str) -> str:
    """Table-name prefix for a partition ('train' or 'test')."""
    if partition not in PARTITIONS:
        raise ValueError(f"Unknown partition '{partition}'. Choose from: {', '.join(PARTITIONS)}")
    return config[f"{partition}_prefix"]


def partition_dir(config: dict[str, Any], partition: str) -> Path:
    """Directory holding the flat files of a partition."""
    if partition not in PARTITIONS:
        raise ValueError(f"Unknown partition '{partition}'. Choose from: {', '.join(PARTITIONS)}")
    return Path(config["data_root"]) / config[f"{partition}_dir"]
