"""outage-tracker command line entry point."""

import argparse
import logging
import sys
from typing import List, Optional

from outage_tracker.config import Settings, get_settings
from outage_tracker.errors import OutageTrackerError
from outage_tracker.pipeline.run import run
from outage_tracker.telemetry.logging import setup_logging

logger = logging.getLogger("outage_tracker")


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="outage-tracker",
        description="Build an outage lifecycle database from the outages.json git history.",
    )
    parser.add_argument("--database-file", default=defaults.database_file,
                        help="data file path")
    parser.add_argument("--repo-remote", default=defaults.repo_remote,
                        help="git remote of the outages repository")
    parser.add_argument("--repo-path", default=defaults.repo_path,
                        help="path to a local clone, preferred over --repo-remote if set")
    parser.add_argument("--tracked-path", default=defaults.tracked_path,
                        help="path of the outages file inside the repository")
    parser.add_argument("--places-file", default=defaults.places_file,
                        help=("GeoJSON FeatureCollection used to turn outage positions into places; "
                              "no places are bundled, so without it county and neighborhood stay empty"))
    parser.add_argument("--place-cache-size", type=int, default=defaults.place_cache_size,
                        help="maximum number of cached point lookups (default unbounded)")
    parser.add_argument("--log-level", default=defaults.log_level,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        type=str.upper)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    defaults = get_settings()
    args = build_parser(defaults).parse_args(argv)
    settings = defaults.model_copy(update={
        "database_file": args.database_file,
        "repo_remote": args.repo_remote or None,
        "repo_path": args.repo_path or None,
        "tracked_path": args.tracked_path,
        "places_file": args.places_file or None,
        "place_cache_size": args.place_cache_size,
        "log_level": args.log_level,
    })
    setup_logging(settings.log_level)

    if not settings.repo_path and not settings.repo_remote:
        logger.critical("need --repo-remote or --repo-path")
        return 2

    try:
        run(settings)
    except (OutageTrackerError, OSError) as exc:
        logger.critical("run aborted: %s", exc, exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
