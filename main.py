"""
CLI entry point for the listing matcher.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import requests

from config import load_settings
from listing_source import fetch_candidate_listings, fetch_user_profile
from matcher import ListingMatcher
from profile_loader import load_listings, load_profile
from reporting import write_matches_json

MATCHES_JSON = Path("matched_listings.json")


class TruncatingFormatter(logging.Formatter):
    """Formatter that truncates log messages to a maximum length."""

    def __init__(self, max_length: int = 200, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_length = max_length

    def format(self, record):
        formatted = super().format(record)
        if len(formatted) > self.max_length:
            formatted = formatted[:self.max_length] + "... (truncated)"
        return formatted


def configure_logging(settings) -> None:
    """
    Configure logging according to settings.

    Args:
        settings: Application settings dataclass.
    """
    log_format = settings.log_format or "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = settings.log_date_format or "%Y-%m-%d %H:%M:%S"

    console_formatter = TruncatingFormatter(max_length=200, fmt=log_format, datefmt=datefmt)
    file_formatter = logging.Formatter(fmt=log_format, datefmt=datefmt)

    handlers = []
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Suppress verbose HTTP logging from client libraries
    for name in ("urllib3", "urllib3.connectionpool", "httpcore", "httpx", "grpc"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract travel listings and score matches.")
    parser.add_argument("--config", type=Path, default=None, help="JSON configuration file")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--extract", metavar="TEXT", help="Extract a listing draft from free text")
    mode.add_argument("--profile", type=Path, help="User profile JSON to score listings for")
    mode.add_argument("--user-id", help="Score listings for a profile fetched from the listing source")
    parser.add_argument("--locale", default="it", help="Language tag for extraction")
    parser.add_argument("--listings", type=Path, help="Listings JSON; defaults to the listing source")
    parser.add_argument("--output", type=Path, default=MATCHES_JSON, help="Report destination")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run extraction or matching from the command line."""
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Configuration error: %s", exc)
        return 1

    configure_logging(settings)
    matcher = ListingMatcher(settings)
    try:
        if args.extract is not None:
            draft = matcher.extract(args.extract, args.locale)
            print(json.dumps(draft.to_dict(), indent=2, ensure_ascii=False))
            return 0

        if args.user_id is not None:
            if not (settings.listing_source_url and settings.listing_source_key):
                logging.error("--user-id needs a configured listing source.")
                return 1
            user = fetch_user_profile(settings.listing_source_url, settings.listing_source_key, args.user_id)
            if user is None:
                logging.error("Profile %s not found.", args.user_id)
                return 1
        else:
            user = load_profile(args.profile)

        if args.listings:
            listings = load_listings(args.listings)
        elif settings.listing_source_url and settings.listing_source_key:
            listings = fetch_candidate_listings(
                settings.listing_source_url,
                settings.listing_source_key,
                exclude_owner=user.id,
            )
        else:
            logging.error("No --listings file and no listing source configured.")
            return 1

        results, source = matcher.score(user, listings)
        write_matches_json(results, listings, args.output, source)
        logging.info("Scored %d listings via %s. Report: %s", len(results), source, args.output)
        return 0
    except (OSError, ValueError, requests.RequestException) as exc:
        logging.error("Run failed: %s", exc)
        return 1
    finally:
        matcher.close()


if __name__ == "__main__":
    sys.exit(main())
