"""
Core pipeline coordinating listing extraction and compatibility scoring.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from canonical import normalize_text, truncate
from config import DEFAULT_SETTINGS, Settings
from data_models import (
    CandidateListing,
    ListingDraft,
    MatchResult,
    UserProfile,
    canonical_order,
)
from extractor import extract
from heuristic import clamp_score, score_heuristic
from llm_handler import build_client
from outcome import Outcome

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SCORING_PROMPT = (
    "You are a matching engine for travel listings (hotel stays and train tickets). "
    "For each listing, rate its compatibility with the user from 0 to 100 and say "
    "whether the match looks bidirectional (the listing owner would likely want the "
    "user's side too). Use the user's preferred kinds, location and maximum price.\n"
    "Reply ONLY with a JSON array, no extra text, one entry per listing id:\n"
    '[{"id": "<listing id>", "score": 0-100, "bidirectional": true|false}]'
)

_TRUTHY = {"true", "yes", "y", "1"}
_ARRAY_START = re.compile(r"\[")


def batched(items: Sequence[T], size: int) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    size = max(1, int(size))
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def project_listing(listing: CandidateListing, settings: Settings) -> Dict[str, Any]:
    """Compact, token-bounded view of a listing; the id is never truncated."""
    return {
        "id": listing.id,
        "title": truncate(listing.title, settings.title_limit),
        "kind": listing.kind.value if listing.kind else None,
        "location": truncate(listing.location, settings.location_limit),
        "price": listing.price,
        "description": truncate(listing.description, settings.description_limit),
    }


def build_prompt(
    user: UserProfile, batch: Iterable[CandidateListing], settings: Settings
) -> str:
    payload = {
        "user": user.to_prompt_dict(),
        "listings": [project_listing(listing, settings) for listing in batch],
    }
    return "Input:\n" + json.dumps(payload, ensure_ascii=False)


def looks_like_array(text: str) -> bool:
    return (text or "").strip().startswith("[")


def parse_model_array(text: str) -> Outcome[List[Any]]:
    """
    Parse the model reply as a JSON array.

    Tries a direct parse first, then the first balanced ``[...]`` found in
    the text (e.g. when wrapped in prose or code fences).
    """
    raw = (text or "").strip()
    try:
        data = json.loads(raw)
        if isinstance(data, list):
            return Outcome.ok(data)
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for match in _ARRAY_START.finditer(raw):
        try:
            data, _ = decoder.raw_decode(raw, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(data, list):
            LOGGER.debug("Extracted JSON array from response (first 200 chars): %s", raw[:200])
            return Outcome.ok(data)

    LOGGER.warning("No JSON array found in LLM response (first 200 chars): %s", raw[:200])
    return Outcome.fallback([], "no json array")


def _coerce_score(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return clamp_score(number)


def _coerce_bidirectional(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return math.isfinite(value) and value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def validate_and_normalize(raw: Any, sent_ids: Set[str]) -> List[MatchResult]:
    """
    Repair a parsed model array against the ids actually sent.

    Entries with unknown ids are dropped, scores are clamped integers,
    ``bidirectional`` becomes a strict boolean, and the first entry wins
    for duplicated ids.

    Args:
        raw: Parsed JSON value returned by the model.
        sent_ids: Ids of the listings in the batch.

    Returns:
        Validated results in canonical order.
    """
    if not isinstance(raw, list):
        return []
    seen: Set[str] = set()
    results: List[MatchResult] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        listing_id = normalize_text(entry.get("id"))
        if listing_id is None or listing_id not in sent_ids or listing_id in seen:
            continue
        seen.add(listing_id)
        results.append(
            MatchResult(
                id=listing_id,
                score=_coerce_score(entry.get("score")),
                bidirectional=_coerce_bidirectional(entry.get("bidirectional")),
            )
        )
    return canonical_order(results)


def _score_batch(
    client, user: UserProfile, batch: List[CandidateListing], settings: Settings
) -> Outcome[List[MatchResult]]:
    prompt = build_prompt(user, batch, settings)
    reply = client.complete_with_timeout(SCORING_PROMPT, prompt)
    if not looks_like_array(reply.value):
        LOGGER.info("Scoring reply does not look like a JSON array; retrying once")
        reply = client.complete_with_timeout(SCORING_PROMPT, prompt)

    parsed = parse_model_array(reply.value)
    if parsed.degraded:
        return Outcome.fallback([], parsed.reason or "unparseable reply")
    results = validate_and_normalize(parsed.value, {listing.id for listing in batch})
    if not results:
        return Outcome.fallback([], "no validated entries")
    return Outcome.ok(results)


def score_with_ai(
    user: UserProfile,
    candidates: Iterable[CandidateListing],
    client,
    settings: Optional[Settings] = None,
) -> Optional[List[MatchResult]]:
    """
    Score candidates with the language model, batch by batch.

    Args:
        user: Profile to match against.
        candidates: Listings to score; ids must be unique.
        client: Completion client, or ``None`` when AI is not configured.
        settings: Batch size and truncation budgets.

    Returns:
        One result per candidate in canonical order, with candidates the
        model never scored filled in at 0; ``None`` when no client is
        configured, there are no candidates, or no batch validated.
    """
    candidates = list(candidates)
    if client is None or not candidates:
        return None
    settings = settings or DEFAULT_SETTINGS

    validated: Dict[str, MatchResult] = {}
    batches = batched(candidates, settings.batch_size)
    for index, batch in enumerate(batches, start=1):
        try:
            outcome = _score_batch(client, user, batch, settings)
        except Exception as exc:
            LOGGER.error("Scoring batch %d/%d failed: %s", index, len(batches), exc)
            continue
        if outcome.degraded:
            LOGGER.warning("Scoring batch %d/%d yielded nothing: %s", index, len(batches), outcome.reason)
        for result in outcome.value:
            validated.setdefault(result.id, result)

    if not validated:
        LOGGER.warning("AI scoring produced no validated results for %d listings", len(candidates))
        return None

    missing = 0
    for listing in candidates:
        if listing.id not in validated:
            validated[listing.id] = MatchResult(id=listing.id, score=0, bidirectional=False)
            missing += 1
    if missing:
        LOGGER.info("Filled %d listings the model did not score", missing)
    return canonical_order(validated.values())


def score_listings(
    user: UserProfile,
    candidates: Iterable[CandidateListing],
    client,
    settings: Optional[Settings] = None,
) -> Tuple[List[MatchResult], str]:
    """
    Score with the model when possible, otherwise with the heuristic.

    Returns:
        ``(results, source)`` where source is ``"ai"`` or ``"heuristic"``.
    """
    settings = settings or DEFAULT_SETTINGS
    candidates = list(candidates)
    results = score_with_ai(user, candidates, client, settings)
    if results is not None:
        return results, "ai"
    return score_heuristic(user, candidates, settings.heuristic), "heuristic"


class ListingMatcher:
    """Coordinates description extraction and listing scoring for one configuration."""

    def __init__(self, settings: Settings, client=None) -> None:
        """
        Initialize the matcher.

        Args:
            settings: Application settings dataclass.
            client: Completion client; built from settings when omitted.
        """
        self.settings = settings
        self.client = client if client is not None else build_client(settings)

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None

    def extract(self, free_text: Any, locale: str = "it") -> ListingDraft:
        return extract(free_text, locale, client=self.client, settings=self.settings)

    def score(
        self, user: UserProfile, candidates: Iterable[CandidateListing]
    ) -> Tuple[List[MatchResult], str]:
        candidates = list(candidates)
        LOGGER.info("Scoring %d listings for user %s", len(candidates), user.id)
        results, source = score_listings(user, candidates, self.client, self.settings)
        LOGGER.info("Scored %d listings via %s", len(results), source)
        return results, source

    def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            self.client.close()
