"""
Match reporting utilities (JSON export).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from data_models import CandidateListing, MatchResult

LOGGER = logging.getLogger(__name__)


def build_report(
    results: Iterable[MatchResult],
    listings: Iterable[CandidateListing],
    source: str,
) -> Dict[str, Any]:
    """
    Join results with their listings for display.

    Args:
        results: Scored results in canonical order.
        listings: Listings the results refer to.
        source: ``"ai"`` or ``"heuristic"``.

    Returns:
        ``{"source": ..., "matches": [...]}`` preserving result order.
    """
    by_id = {listing.id: listing for listing in listings}
    matches: List[Dict[str, Any]] = []
    for result in results:
        listing = by_id.get(result.id)
        if listing is None:
            continue
        matches.append(
            {
                "id": listing.id,
                "title": listing.title,
                "location": listing.location,
                "type": listing.kind.value if listing.kind else None,
                "price": listing.price,
                "score": result.score,
                "bidirectional": result.bidirectional,
            }
        )
    return {"source": source, "matches": matches}


def write_matches_json(
    results: Iterable[MatchResult],
    listings: Iterable[CandidateListing],
    output_path: Path,
    source: str,
) -> None:
    """
    Persist match results to JSON.

    Args:
        results: Scored results in canonical order.
        listings: Listings the results refer to.
        output_path: Destination file path.
        source: Which scorer produced the results.
    """
    payload = build_report(results, listings, source)
    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    LOGGER.info("Wrote %d matches to %s", len(payload["matches"]), output_path)
