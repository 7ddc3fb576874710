#!/usr/bin/env python3
"""
Regime Forecast Engine - Main Entry Point.

Usage:
    python -m src.main data/rows.parquet
    python -m src.main data/rows.csv --config config/config.yaml
    python -m src.main data/rows.parquet --json --include-rows
    python -m src.main data/rows.parquet --dry-run

Environment:
    REGIME_<SECTION>_<FIELD>: Override any engine parameter
        (e.g. REGIME_MARKOV_WINDOW=800)
    REGIME_LOGGING_LEVEL: Default log level
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd

from config.settings import AppConfig, ConfigurationError
from src.core import ForecastResult, ForecastService
from src.models.model_store import ConditioningModelStore
from src.utils.config_loader import ConfigLoader


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """
    Configure logging for the engine.

    Console output goes to stderr so that --json output stays clean.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging
    """
    # Create formatters
    console_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_format = (
        "%(asctime)s [%(levelname)s] %(name)s "
        "(%(filename)s:%(lineno)d): %(message)s"
    )

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(console_format))
    root_logger.addHandler(console_handler)

    # File handler (if specified)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # Log everything to file
        file_handler.setFormatter(logging.Formatter(file_format))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Market regime inference and multi-step forecasting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Forecast from a Parquet file of observation rows
  python -m src.main data/rows.parquet

  # Use a config file and print JSON
  python -m src.main data/rows.csv --config config/config.yaml --json

  # Validate configuration and input without computing
  python -m src.main data/rows.parquet --dry-run
        """,
    )

    parser.add_argument(
        "data",
        type=str,
        help="Observation rows (.parquet or .csv)",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration YAML file (default: config/config.yaml)",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to .env file (default: .env)",
    )

    parser.add_argument(
        "--symbol",
        type=str,
        default=None,
        help="Instrument label for the result (default: from config)",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON",
    )

    parser.add_argument(
        "--include-rows",
        action="store_true",
        help="Include per-row states and confidence in JSON output",
    )

    parser.add_argument(
        "--no-model",
        action="store_true",
        help="Ignore the stored conditioning model and use the untrained default",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and input, then exit",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, INFO)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (default: from config, console only)",
    )

    return parser.parse_args(argv)


def load_observations(path: str) -> pd.DataFrame:
    """
    Load observation rows from Parquet or CSV.

    Args:
        path: File path

    Returns:
        DataFrame sorted by timestamp

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the extension is not supported
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(path)

    suffix = file_path.suffix.lower()
    if suffix == ".parquet":
        df = pd.read_parquet(file_path, engine="pyarrow")
    elif suffix == ".csv":
        df = pd.read_csv(file_path)
    else:
        raise ValueError(f"Unsupported file type '{suffix}' (use .parquet or .csv)")

    if "timestamp" in df.columns:
        df = df.sort_values("timestamp").reset_index(drop=True)
    return df


def print_config_summary(config: AppConfig) -> None:
    """Print configuration summary."""
    engine = config.engine
    print("\nConfiguration:", file=sys.stderr)
    print(f"  Symbol: {config.symbol}", file=sys.stderr)
    print(f"  Window: {engine.markov.window}", file=sys.stderr)
    half_life = "auto" if engine.markov.auto_half_life else engine.markov.half_life
    print(f"  Half-life: {half_life} (base {engine.markov.half_life})", file=sys.stderr)
    print(f"  Order: {engine.markov.order}", file=sys.stderr)
    print(f"  Dirichlet strength: {engine.markov.dirichlet_strength}", file=sys.stderr)
    print(f"  Confidence gate: {engine.regime.confidence_gate}", file=sys.stderr)
    print(f"  Horizons: {list(engine.forecast.horizons_hours)} h", file=sys.stderr)
    print(f"  Interval: {engine.forecast.interval_minutes} min", file=sys.stderr)
    print(file=sys.stderr)


def format_summary(symbol: str, result: ForecastResult) -> str:
    """Human-readable forecast summary."""
    if not result.available:
        return f"{symbol}: forecast unavailable ({result.reason}, {result.n_rows} rows)"

    diag = result.diagnostics
    lines = [
        "=" * 50,
        f"REGIME FORECAST: {symbol}",
        "=" * 50,
        f"Current state:    {result.current_state.name} (run of {result.run_length})",
        f"Half-life used:   {diag['half_life_used']:g}",
        f"Log-likelihood:   {diag['log_likelihood']:.4f}",
        f"Brier:            {diag['brier']:.4f}",
        f"Accuracy:         {diag['accuracy'] * 100:.1f}% (n={diag['count']})",
        "Hit rate:         " + " / ".join(
            f"{name[0]} {rate * 100:.0f}%" for name, rate in diag.get("hit_rate", {}).items()
        ),
        "",
        "Forecasts (D / R / B / U):",
    ]
    for label, vec in result.forecasts.items():
        probs = " / ".join(f"{p * 100:5.1f}%" for p in vec)
        lines.append(f"  {label:>5} ({result.steps[label]:>3} bars)  {probs}")

    bias = result.forecast_bias()
    lines.append("")
    lines.append(
        f"Bias: U {bias['bullish'] * 100:.1f}% | D {bias['bearish'] * 100:.1f}% "
        f"| conf {bias['confidence'] * 100:.0f}%"
    )
    lines.append("=" * 50)
    return "\n".join(lines)


async def main(args: argparse.Namespace, config: AppConfig) -> int:
    """
    Main async entry point.

    Args:
        args: Parsed command line arguments
        config: Loaded configuration

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    logger = logging.getLogger(__name__)
    symbol = args.symbol or config.symbol

    try:
        df = load_observations(args.data)
    except FileNotFoundError:
        print(f"Error: Data file not found: {args.data}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        print(f"Error loading data: {e}", file=sys.stderr)
        return 1

    logger.info(f"Loaded {len(df)} observation rows from {args.data}")

    if args.dry_run:
        print("Dry run complete - configuration and input are valid", file=sys.stderr)
        return 0

    model = None
    if not args.no_model:
        store = ConditioningModelStore(
            str(config.storage.store_path), key=config.storage.model_key
        )
        model = store.load_or_default()

    service = ForecastService(config.engine, model=model)
    try:
        result = await service.submit(symbol, df)
    finally:
        await service.shutdown()

    if result is None:
        logger.error("Forecast computation failed")
        return 1

    if args.json:
        print(json.dumps(
            {"symbol": symbol, **result.to_dict(include_rows=args.include_rows)},
            indent=2,
        ))
    else:
        print(format_summary(symbol, result))

    return 0 if result.available else 2


def run(argv: Optional[list] = None) -> None:
    """Synchronous entry point."""
    args = parse_args(argv)

    try:
        config = ConfigLoader(args.config, args.env_file).load()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        args.log_level or config.logging.level,
        args.log_file or config.logging.file_path,
    )

    logger = logging.getLogger(__name__)
    logger.info("Starting regime forecast engine")
    logger.info(f"Data: {args.data}")

    print_config_summary(config)

    try:
        exit_code = asyncio.run(main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 0

    logger.info(f"Exiting with code {exit_code}")
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
