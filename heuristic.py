"""
Deterministic compatibility scoring used when the language model is unavailable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List

from data_models import CandidateListing, MatchResult, UserProfile, canonical_order

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeuristicWeights:
    """Tuning constants for the heuristic scorer."""

    base: float = 60.0
    kind_bonus: float = 15.0
    price_bonus: float = 10.0
    location_bonus: float = 10.0
    bidirectional_threshold: float = 80.0


DEFAULT_WEIGHTS = HeuristicWeights()


def clamp_score(value: float) -> int:
    """Clamp to [0, 100] and round half up to an integer."""
    if not math.isfinite(value):
        return 0
    return int(math.floor(max(0.0, min(100.0, value)) + 0.5))


def _score_one(
    user: UserProfile, listing: CandidateListing, weights: HeuristicWeights
) -> MatchResult:
    prefs = user.preferences
    score = weights.base
    if listing.kind is not None and listing.kind in prefs.kinds:
        score += weights.kind_bonus
    if listing.price is not None and (prefs.max_price is None or listing.price <= prefs.max_price):
        score += weights.price_bonus
    wanted = prefs.location.strip().lower()
    if wanted and wanted in listing.location.lower():
        score += weights.location_bonus
    final = clamp_score(score)
    return MatchResult(
        id=listing.id,
        score=final,
        bidirectional=final >= weights.bidirectional_threshold,
    )


def score_heuristic(
    user: UserProfile,
    candidates: Iterable[CandidateListing],
    weights: HeuristicWeights = DEFAULT_WEIGHTS,
) -> List[MatchResult]:
    """
    Score candidates against a user profile without any network call.

    Args:
        user: Profile whose preferences drive the bonuses.
        candidates: Listings to score.
        weights: Base score, bonuses and the bidirectional threshold.

    Returns:
        One MatchResult per candidate in canonical order.
    """
    results = [_score_one(user, listing, weights) for listing in candidates]
    LOGGER.debug("Heuristic scored %d listings", len(results))
    return canonical_order(results)
