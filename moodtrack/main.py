"""
moodtrack: emotion classification and listening analytics.

Command-line entry point running batch jobs and reports against the MongoDB
event store:
- Maintenance: init-db, reset
- Enrichment: backfill-features, fill, rebuild, reclassify, aggregates
- Reports (JSON on stdout): heatmap, day, distribution, weekday-hour, trends,
  listening-time, stats
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime
from typing import Any, List, Optional

from dotenv import load_dotenv

from moodtrack.adapters.clients.spotify import SpotifyCatalogClient
from moodtrack.adapters.clients.suggestions import create_suggestion_provider
from moodtrack.adapters.repositories.base import EventStore
from moodtrack.adapters.repositories.mongo import MongoDBConnectionError, MongoEventStore
from moodtrack.config import AIMode, EngineConfig
from moodtrack.core import pipeline, reports
from moodtrack.core.errors import InsufficientDataError, StoreOperationError
from moodtrack.core.models import EventSource, ensure_utc, parse_category
from moodtrack.utils.db_maintenance import DatabaseMaintainer
from moodtrack.utils.logger import setup_logger

logger = logging.getLogger(__name__)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def _datetime_arg(value: str) -> datetime:
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO date: {value}") from None


def _category_arg(value: str):
    category = parse_category(value)
    if category is None:
        raise argparse.ArgumentTypeError(f"Unknown category: {value}")
    return category


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--user", required=True, help="User id whose data is processed")
    common.add_argument("--timezone", default=None, help="IANA timezone (default: MOODTRACK_TIMEZONE or UTC)")
    common.add_argument("--no-ai", action="store_true", help="Never call the AI suggestion provider")
    common.add_argument("--verbose", action="store_true", help="Debug logging")

    window = argparse.ArgumentParser(add_help=False)
    window.add_argument("--from", dest="start", type=_datetime_arg, help="Window start (ISO date)")
    window.add_argument("--to", dest="end", type=_datetime_arg, help="Window end, exclusive (ISO date)")

    parser = argparse.ArgumentParser(
        prog="moodtrack",
        description="Emotion classification and listening analytics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  moodtrack init-db --user me
  moodtrack backfill-features --user me --days 180
  moodtrack fill --user me --no-ai
  moodtrack heatmap --user me --range 90d --timezone Europe/Paris
  moodtrack day --user me --date 2025-03-29 --timezone Europe/Paris
  moodtrack trends --user me --window 30
        """
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", parents=[common], help="Create database indexes")

    p = sub.add_parser("backfill-features", parents=[common], help="Fetch missing track descriptors")
    p.add_argument("--days", type=int, default=pipeline.BACKFILL_DAYS)

    p = sub.add_parser("fill", parents=[common], help="Classify events without a classification")
    p.add_argument("--limit", type=int, default=pipeline.FILL_LIMIT)

    p = sub.add_parser("rebuild", parents=[common], help="Recompute every classification")
    p.add_argument("--limit", type=int, default=None)

    p = sub.add_parser("reclassify", parents=[common], help="Reclassify recent events with personal cut points")
    p.add_argument("--days", type=int, default=pipeline.RECLASSIFY_DAYS)
    p.add_argument("--limit", type=int, default=pipeline.RECLASSIFY_LIMIT)
    p.add_argument("--axis", choices=["arousal", "energy"], default="arousal")

    sub.add_parser("aggregates", parents=[common], help="Rebuild stored daily aggregates")

    p = sub.add_parser("heatmap", parents=[common, window], help="Calendar heatmap with anomaly flags")
    p.add_argument("--range", dest="range_key", choices=list(reports.RANGE_DAYS), default=reports.DEFAULT_RANGE)
    p.add_argument("--source", choices=[s.value for s in EventSource], default=None)

    p = sub.add_parser("day", parents=[common], help="Drill-down of one local day")
    p.add_argument("--date", dest="day", required=True, help="Local date (YYYY-MM-DD)")
    p.add_argument("--source", choices=[s.value for s in EventSource], default=None)

    p = sub.add_parser("distribution", parents=[common, window], help="Emotion distribution per bucket")
    p.add_argument("--group", choices=["day", "week", "month"], default="day")
    p.add_argument("--weighted", action="store_true", help="Weight moods by track completion")
    p.add_argument("--category", type=_category_arg, default=None)

    p = sub.add_parser("weekday-hour", parents=[common, window], help="Weekday x hour matrix")
    p.add_argument("--weekday", type=int, default=None, help="Monday=0; with --hour, list top tracks")
    p.add_argument("--hour", type=int, default=None)

    p = sub.add_parser("trends", parents=[common], help="Window-over-window category trends")
    p.add_argument("--window", type=int, default=reports.TREND_WINDOW_DAYS)

    sub.add_parser("listening-time", parents=[common, window], help="Listening time per category")

    p = sub.add_parser("stats", parents=[common], help="Data quality statistics")
    p.add_argument("--days", type=int, default=pipeline.STATS_DAYS)

    p = sub.add_parser("reset", parents=[common], help="Delete the user's events and classifications")
    p.add_argument("--yes", action="store_true", help="Confirm deletion")

    return parser.parse_args(argv)


# ============================================================================
# COMMANDS
# ============================================================================

def run_command(args: argparse.Namespace, config: EngineConfig, store: EventStore) -> Any:
    """
    Executes one subcommand.

    Returns:
        JSON-serializable result.

    Raises:
        InsufficientDataError: When a statistic cannot be computed.
        StoreOperationError: On store failures.
    """
    user = args.user
    tz = args.timezone or config.default_timezone
    command = args.command

    if command == "init-db":
        if not isinstance(store, MongoEventStore):
            return {"indexes": []}
        return {"indexes": DatabaseMaintainer(store.db).ensure_indexes()}

    if command == "backfill-features":
        catalog = SpotifyCatalogClient.from_config(config)
        if catalog is None:
            return {"error": "Spotify credentials not configured"}
        return pipeline.backfill_descriptors(store, catalog, user, days=args.days).to_dict()

    if command in ("fill", "rebuild"):
        suggester = create_suggestion_provider(config)
        if config.ai_mode == AIMode.ONLY and suggester is None:
            logger.warning("[WARN] ai_mode=only without a configured provider: every event will be skipped")
        if command == "fill":
            report = pipeline.fill_missing_classifications(store, user, config, suggester, limit=args.limit)
        else:
            report = pipeline.rebuild_classifications(store, user, config, suggester, limit=args.limit)
        return report.to_dict()

    if command == "reclassify":
        return pipeline.reclassify_with_cuts(store, user, days=args.days, limit=args.limit,
                                             axis=args.axis).to_dict()

    if command == "aggregates":
        return pipeline.rebuild_daily_aggregates(store, user, tz).to_dict()

    if command == "heatmap":
        source = EventSource(args.source) if args.source else None
        return reports.calendar_heatmap(store, user, tz, args.range_key, args.start, args.end, source)

    if command == "day":
        source = EventSource(args.source) if args.source else None
        return reports.day_detail(store, user, args.day, tz, source)

    if command == "distribution":
        return reports.emotion_distribution(store, user, args.group, tz, args.start, args.end,
                                            weighted=args.weighted, category=args.category)

    if command == "weekday-hour":
        if args.weekday is not None and args.hour is not None:
            return reports.weekday_hour_detail(store, user, args.weekday, args.hour, tz, args.start, args.end)
        return reports.weekday_hour_report(store, user, tz, args.start, args.end)

    if command == "trends":
        return reports.trend_report(store, user, window_days=args.window)

    if command == "listening-time":
        return reports.listening_time_report(store, user, args.start, args.end)

    if command == "stats":
        return pipeline.data_quality_report(store, user, days=args.days)

    if command == "reset":
        if not args.yes:
            return {"error": "Refusing to delete data without --yes"}
        return pipeline.reset_user_data(store, user)

    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None, store: Optional[EventStore] = None) -> None:
    """
    Main execution function.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
        store: Store to use instead of MongoDB.
    """
    load_dotenv()
    args = parse_arguments(argv)
    setup_logger("moodtrack", level=logging.DEBUG if args.verbose else logging.INFO)

    config = EngineConfig.from_env()
    if args.no_ai:
        config = replace(config, ai_mode=AIMode.OFF)

    try:
        if store is None:
            store = MongoEventStore.from_config(config)
        result = run_command(args, config, store)
    except InsufficientDataError as e:
        logger.error(f"{e} (population: {e.population_size})")
        print(json.dumps({"error": str(e)}))
        sys.exit(1)
    except MongoDBConnectionError as e:
        logger.error(f"Database connection failed: {e}")
        print(json.dumps({"error": f"Database connection failed: {e}"}))
        sys.exit(1)
    except StoreOperationError as e:
        logger.error(f"Store operation failed: {e}")
        print(json.dumps({"error": str(e)}))
        sys.exit(1)
    except ValueError as e:
        logger.error(str(e))
        print(json.dumps({"error": str(e)}))
        sys.exit(2)

    print(json.dumps(result, indent=2, default=str))
    if isinstance(result, dict) and "error" in result:
        sys.exit(1)


if __name__ == "__main__":
    main()
