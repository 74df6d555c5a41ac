"""
CLI entry point for the forecasting engine.

Usage:
    # Train the default families for one timeframe and activate the result
    python -m forecasting train --timeframe 1h

    # Train a direct 30-step gradient-boosted model on the top 50 symbols
    python -m forecasting train --timeframe 1d --families xgboost --horizon 30 --top-n 50

    # Forecast the next 10 hourly candles for BTC
    python -m forecasting predict --symbol BTC --timeframe 1h --steps 10

    # List stored model versions, or activate one
    python -m forecasting models --timeframe 1h
    python -m forecasting models --timeframe 1h --activate v20260101120000
"""

import argparse
import json
import logging
import sys

from forecasting.entities import ForecastMode, Timeframe
from forecasting.errors import ForecastingError
from forecasting.models.base import ModelFamily

logger = logging.getLogger(__name__)


def cmd_train(args: argparse.Namespace) -> int:
    """Train models for one timeframe from the candle files."""
    from forecasting.config import config
    from forecasting.data.provider import FileCandleProvider
    from forecasting.models.registry import ModelRegistry
    from forecasting.training import TrainingPipeline, select_top_symbols

    tf = Timeframe(args.timeframe)
    provider = FileCandleProvider(config.paths.data_dir)
    candles_df = provider.load_universe(tf, args.symbols)
    if candles_df.empty:
        logger.error("No %s candle data under %s.", tf.value, config.paths.data_dir)
        return 1

    symbols = args.symbols
    if args.top_n:
        symbols = select_top_symbols(candles_df, args.top_n)
        logger.info("Filtered to top %d symbols: %s", len(symbols), symbols[:5])

    pipeline = TrainingPipeline(
        registry=ModelRegistry(config.paths.models_dir),
        track=not args.no_track,
    )
    result = pipeline.run(
        candles_df,
        tf,
        families=args.families,
        horizon=args.horizon,
        symbols=symbols,
    )

    for name, m in result.metrics.items():
        logger.info("[%s] %s", name, m)
    if result.manifest is not None:
        logger.info(
            "Saved %s model %s (%d symbols, %d features).",
            result.model.name,
            result.manifest.version,
            result.manifest.num_symbols,
            result.manifest.feature_count,
        )
    return 0


def cmd_predict(args: argparse.Namespace) -> int:
    """Run a forecast for one symbol."""
    from forecasting.config import config
    from forecasting.data.provider import FileCandleProvider
    from forecasting.inference import ForecastService
    from forecasting.models.registry import ModelRegistry
    from forecasting.utils.cache import CacheClient

    service = ForecastService(
        provider=FileCandleProvider(config.paths.data_dir),
        loader=ModelRegistry(config.paths.models_dir),
        cache=None if args.no_cache else CacheClient.from_config(),
    )
    forecast = service.forecast(
        symbol=args.symbol,
        timeframe=args.timeframe,
        steps=args.steps,
        mode=args.mode,
    )

    if args.json:
        print(json.dumps(forecast.to_dict(), indent=2))
        return 0

    for s in forecast.steps:
        logger.info(
            "%s | %2d | %s | O=%.6g H=%.6g L=%.6g C=%.6g | conf=%.3f | %s",
            forecast.symbol,
            s.step_number,
            s.timestamp.isoformat(),
            s.open,
            s.high,
            s.low,
            s.close,
            s.confidence,
            s.direction.value,
        )
    logger.info(
        "%s %s | direction=%s | confidence_avg=%.3f | drivers=%s",
        forecast.symbol,
        forecast.timeframe.value,
        forecast.direction.value,
        forecast.confidence_avg,
        ", ".join(forecast.indicator_drivers) or "-",
    )
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    """List stored model versions for a timeframe, or activate one."""
    from forecasting.config import config
    from forecasting.models.registry import ModelRegistry

    registry = ModelRegistry(config.paths.models_dir)
    tf = Timeframe(args.timeframe)

    if args.activate:
        registry.activate(tf, args.activate)
        return 0

    active = registry.active_version(tf)
    manifests = registry.list_versions(tf)
    if not manifests:
        logger.warning("No models stored for %s under %s.", tf.value, registry.root)
        return 0
    for m in manifests:
        logger.info(
            "%s %s | %s | horizon=%d | symbols=%d | features=%d | dir_acc=%.2f%% | trained %s",
            "*" if m.version == active else " ",
            m.version,
            m.model_name,
            m.horizon,
            m.num_symbols,
            m.feature_count,
            m.accuracy_avg * 100,
            m.trained_at,
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forecasting",
        description="Candle forecasting engine CLI",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ERROR)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    timeframes = [tf.value for tf in Timeframe]

    # Train
    train_parser = subparsers.add_parser("train", help="Train models for a timeframe")
    train_parser.add_argument("--timeframe", choices=timeframes, default="1h")
    train_parser.add_argument(
        "--families", nargs="+", default=None,
        choices=[f.value for f in ModelFamily if f != ModelFamily.ENSEMBLE],
        help="Model families to train (default: all available)",
    )
    train_parser.add_argument(
        "--horizon", type=int, default=1,
        help="Steps predicted per call: 1 = iterative, N = direct N-step model",
    )
    train_parser.add_argument(
        "--top-n", type=int, default=None, dest="top_n",
        help="Train only on the top N symbols by USD volume",
    )
    train_parser.add_argument(
        "--symbols", nargs="+", default=None,
        help="Explicit symbol list (default: every file for the timeframe)",
    )
    train_parser.add_argument(
        "--no-track", action="store_true", dest="no_track",
        help="Disable MLflow tracking",
    )
    train_parser.set_defaults(func=cmd_train)

    # Predict
    predict_parser = subparsers.add_parser("predict", help="Forecast one symbol")
    predict_parser.add_argument("--symbol", required=True, help="Ticker symbol")
    predict_parser.add_argument("--timeframe", choices=timeframes, default="1h")
    predict_parser.add_argument("--steps", type=int, default=None, help="Number of future candles")
    predict_parser.add_argument(
        "--mode", choices=[m.value for m in ForecastMode], default=None,
        help="Force iterative or direct rollout (skips the cache)",
    )
    predict_parser.add_argument("--json", action="store_true", help="Print the forecast as JSON")
    predict_parser.add_argument(
        "--no-cache", action="store_true", dest="no_cache",
        help="Do not read or write the forecast cache",
    )
    predict_parser.set_defaults(func=cmd_predict)

    # Models
    models_parser = subparsers.add_parser("models", help="List or activate model versions")
    models_parser.add_argument("--timeframe", choices=timeframes, default="1h")
    models_parser.add_argument("--activate", default=None, help="Version to activate")
    models_parser.set_defaults(func=cmd_models)

    return parser


def main(argv: list[str] | None = None) -> int:
    from forecasting.settings import settings
    from forecasting.utils.logging import configure_logging

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    try:
        return args.func(args)
    except (ForecastingError, FileNotFoundError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
