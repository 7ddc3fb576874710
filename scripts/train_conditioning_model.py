#!/usr/bin/env python3
"""
Conditioning Model Training CLI.

Labels the observation rows with canonical regime states, fits the
logistic conditioning model on them and stores it for the engine.

Usage:
    # Train and store
    python scripts/train_conditioning_model.py data/rows.parquet

    # Train without saving (report metrics only)
    python scripts/train_conditioning_model.py data/rows.parquet --no-save

    # Show the stored model
    python scripts/train_conditioning_model.py --show

    # Remove the stored model
    python scripts/train_conditioning_model.py --clear
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import AppConfig, ConfigurationError
from src.features.observation import ensure_regime_fields
from src.main import load_observations
from src.models.logit_trainer import TrainingResult, fit_logit_model
from src.models.model_store import ConditioningModelStore
from src.regime.regime_labeler import StateLabeler
from src.regime.regime_learner import RegimeLearner
from src.utils.config_loader import ConfigLoader

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def train(data_path: str, config: AppConfig) -> TrainingResult:
    """
    Train the conditioning model on a file of observation rows.

    Args:
        data_path: Parquet or CSV file
        config: Application configuration

    Returns:
        TrainingResult
    """
    logger.info("=" * 60)
    logger.info("TRAINING CONDITIONING MODEL")
    logger.info(f"Data: {data_path}")
    logger.info("=" * 60)

    logger.info("1. Loading observation rows...")
    rows = ensure_regime_fields(load_observations(data_path))
    logger.info(f"   {len(rows)} rows")

    logger.info("2. Inferring canonical states...")
    rule_states = StateLabeler().label_states(rows)
    inference = RegimeLearner(config.engine.regime).infer(rows, rule_states)
    logger.info(f"   rule/learned agreement: {inference.agreement:.1%}")

    logger.info("3. Fitting logistic model...")
    result = fit_logit_model(rows, inference.states, config.engine.conditioning)
    if result.trained:
        logger.info(f"   samples: {result.n_samples}, temperature: {result.model.temperature}")
        for name, value in result.metrics.items():
            logger.info(f"   {name}: {value}")
    else:
        logger.warning(f"   not trained: {result.reason}")

    return result


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Train the regime conditioning model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Train and store
    python scripts/train_conditioning_model.py data/rows.parquet

    # Use a config file
    python scripts/train_conditioning_model.py data/rows.csv --config config/config.yaml

    # Show the stored model
    python scripts/train_conditioning_model.py --show
        """,
    )

    parser.add_argument(
        "data",
        type=str,
        nargs="?",
        help="Observation rows (.parquet or .csv)",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration YAML file",
    )

    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not store the trained model",
    )

    parser.add_argument(
        "--show",
        action="store_true",
        help="Print the stored model and exit",
    )

    parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove the stored model and exit",
    )

    args = parser.parse_args()

    try:
        config = ConfigLoader(args.config).load()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    store = ConditioningModelStore(str(config.storage.store_path), key=config.storage.model_key)

    if args.clear:
        store.clear()
        return 0

    if args.show:
        model = store.load()
        if model is None:
            print("No valid stored model")
            return 1
        print(json.dumps(model.to_dict(), indent=2))
        return 0

    if not args.data:
        parser.error("data file is required unless --show or --clear is given")

    try:
        result = train(args.data, config)
    except FileNotFoundError:
        logger.error(f"Data file not found: {args.data}")
        return 1
    except ValueError as e:
        logger.error(f"Training failed: {e}")
        return 1

    if not result.trained:
        return 2

    if args.no_save:
        logger.info("\nTraining complete (not saved)")
        return 0

    if not store.save(result.model):
        return 1

    logger.info(f"\nTraining complete! Model stored under '{store.key}' in {config.storage.store_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
