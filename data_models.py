"""
Shared data models used across the application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from canonical import (
    normalize_kind,
    normalize_price,
    normalize_text,
    pick_field,
)


class Kind(str, Enum):
    LODGING = "LODGING"
    RAIL = "RAIL"


class Direction(str, Enum):
    SEEKING = "SEEKING"
    OFFERING = "OFFERING"


@dataclass(frozen=True)
class ListingDraft:
    """
    Canonical listing record produced by the description extractor.

    Text fields use ``""`` as their empty value; enum and tri-state fields
    use ``None``. ``return_at`` is ``None`` unless a return leg is known.
    """

    cerco_vendo: Optional[Direction] = None
    kind: Optional[Kind] = None
    title: str = ""
    location: str = ""
    origin: str = ""
    destination: str = ""
    check_in: str = ""
    check_out: str = ""
    depart_at: str = ""
    arrive_at: str = ""
    is_named_ticket: Optional[bool] = None
    traveler_gender: Optional[str] = None
    booking_reference: str = ""
    price: str = ""
    image_url: str = ""
    return_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape with camelCase keys; ``returnAt`` only when set."""
        payload: Dict[str, Any] = {
            "cercoVendo": self.cerco_vendo.value if self.cerco_vendo else None,
            "kind": self.kind.value if self.kind else None,
            "title": self.title,
            "location": self.location,
            "origin": self.origin,
            "destination": self.destination,
            "checkIn": self.check_in,
            "checkOut": self.check_out,
            "departAt": self.depart_at,
            "arriveAt": self.arrive_at,
            "isNamedTicket": self.is_named_ticket,
            "travelerGender": self.traveler_gender,
            "bookingReference": self.booking_reference,
            "price": self.price,
            "imageUrl": self.image_url,
        }
        if self.return_at:
            payload["returnAt"] = self.return_at
        return payload


EMPTY_DRAFT = ListingDraft()


def _as_float(value: Any) -> Optional[float]:
    text = normalize_price(value)
    return float(text) if text is not None else None


@dataclass(frozen=True)
class CandidateListing:
    """Listing scored against a user profile."""

    id: str
    title: str = ""
    kind: Optional[Kind] = None
    location: str = ""
    price: Optional[float] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CandidateListing":
        """
        Build a candidate from a persisted row or request payload.

        Raises:
            ValueError: If the row is not a mapping or carries no id.
        """
        if not isinstance(data, Mapping):
            raise ValueError("Listing must be an object")
        listing_id = normalize_text(pick_field(data, "id"))
        if listing_id is None:
            raise ValueError("Listing is missing 'id'")
        kind = normalize_kind(pick_field(data, "kind", "type"))
        return cls(
            id=listing_id,
            title=normalize_text(pick_field(data, "title")) or "",
            kind=Kind(kind) if kind else None,
            location=normalize_text(pick_field(data, "location")) or "",
            price=_as_float(pick_field(data, "price")),
            description=normalize_text(pick_field(data, "description")) or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind.value if self.kind else None,
            "location": self.location,
            "price": self.price,
            "description": self.description,
        }


@dataclass(frozen=True)
class Preferences:
    kinds: FrozenSet[Kind] = frozenset()
    location: str = ""
    max_price: Optional[float] = None


@dataclass(frozen=True)
class UserProfile:
    """Scoring input: user id and matching preferences only."""

    id: Optional[str] = None
    preferences: Preferences = field(default_factory=Preferences)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserProfile":
        """
        Build a profile from ``{id, preferences: {kinds, location, maxPrice}}``.

        The legacy ``prefs``/``types`` names are accepted as well.

        Raises:
            ValueError: If ``data`` is not a mapping.
        """
        if not isinstance(data, Mapping):
            raise ValueError("User must be an object")
        prefs = pick_field(data, "preferences", "prefs") or {}
        raw_kinds = pick_field(prefs, "kinds", "types") or []
        if isinstance(raw_kinds, str):
            raw_kinds = [raw_kinds]
        kinds = set()
        if isinstance(raw_kinds, Iterable):
            for raw in raw_kinds:
                token = normalize_kind(raw)
                if token:
                    kinds.add(Kind(token))
        return cls(
            id=normalize_text(pick_field(data, "id")),
            preferences=Preferences(
                kinds=frozenset(kinds),
                location=normalize_text(pick_field(prefs, "location")) or "",
                max_price=_as_float(pick_field(prefs, "maxPrice", "max_price")),
            ),
        )

    def to_prompt_dict(self) -> Dict[str, Any]:
        """Compact projection sent to the model (id and preferences only)."""
        prefs = self.preferences
        return {
            "id": self.id,
            "preferences": {
                "kinds": sorted(kind.value for kind in prefs.kinds),
                "location": prefs.location or None,
                "maxPrice": prefs.max_price,
            },
        }


@dataclass(frozen=True)
class MatchResult:
    """Compatibility score for one candidate listing."""

    id: str
    score: int
    bidirectional: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "score": self.score, "bidirectional": self.bidirectional}


def canonical_order(results: Iterable[MatchResult]) -> List[MatchResult]:
    """Sort by score descending, then id ascending."""
    return sorted(results, key=lambda result: (-result.score, result.id))


def ensure_unique_ids(listings: Iterable[CandidateListing]) -> List[CandidateListing]:
    """
    Reject listing collections that repeat an id.

    Raises:
        ValueError: If two listings share an id.
    """
    listings = list(listings)
    seen = set()
    for listing in listings:
        if listing.id in seen:
            raise ValueError(f"Duplicate listing id: {listing.id}")
        seen.add(listing.id)
    return listings
