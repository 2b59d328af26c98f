#!/usr/bin/env python3
"""
Feature Warehouse - Pipeline Runner

Builds the wide feature table of each partition and, optionally, exports the
typed tables to the cache and trains the baseline classifier.

Usage:
    python scripts/run_pipeline.py --partition train --partition test --export --train-model
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feature_warehouse.core.catalog import Catalog
from feature_warehouse.core.config_loader import PARTITIONS, load_pipeline_config
from feature_warehouse.logging_config import configure_logging
from feature_warehouse.modeling.evaluation import train_baseline
from feature_warehouse.pipeline import FeaturePipeline
from feature_warehouse.storage import TableCache


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Build wide feature tables from partitioned flat files")
    parser.add_argument("--config", type=Path, default=None, help="Pipeline YAML (default: config/pipeline.yaml)")
    parser.add_argument(
        "--partition",
        action="append",
        choices=PARTITIONS,
        help="Partition to run; repeat for several (default: all)",
    )
    parser.add_argument("--export", action="store_true", help="Save typed wide tables to the cache directory")
    parser.add_argument("--train-model", action="store_true", help="Train and score the baseline classifier")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_pipeline_config(args.config)
    configure_logging(args.log_level or config["log_level"])

    partitions = tuple(args.partition or PARTITIONS)
    if args.train_model and "train" not in partitions:
        print("--train-model needs the train partition", file=sys.stderr)
        return 2

    cache = TableCache(config["cache_dir"])
    with Catalog(config["database_path"] or None) as catalog:
        pipeline = FeaturePipeline(config, catalog=catalog, cache=cache)
        results = pipeline.run(partitions)

        for result in results.values():
            print(f"{result.partition}: {result.wide_table} ({result.row_count:,} rows)")
            if result.load_report.failures:
                print(result.load_report.summary())

        if args.export:
            for partition in partitions:
                print(f"Exported {partition} to {pipeline.export(partition)}")

        if args.train_model:
            train_df, _ = pipeline.coerce("train")
            test_df = pipeline.coerce("test")[0] if "test" in partitions else None
            training = train_baseline(train_df, test_df, config)

            print("Validation metrics:")
            for name, value in training.metrics.items():
                print(f"  {name:>14}: {value:.4f}")

            model_path = Path(config["cache_dir"]) / "baseline_model.joblib"
            training.model.save(model_path)
            print(f"Model saved to {model_path}")
            if training.predictions is not None:
                print(f"Predictions saved to {cache.save('test_predictions', training.predictions)}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
