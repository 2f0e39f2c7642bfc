"""
Canonicalization helpers for listing fields.

Every function here is total: malformed input degrades to ``None`` rather
than raising, so bad model output can never crash a caller-owned form.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

KIND_TOKENS: Dict[str, str] = {
    "lodging": "LODGING",
    "hotel": "LODGING",
    "rail": "RAIL",
    "train": "RAIL",
}

DIRECTION_TOKENS: Dict[str, str] = {
    "seeking": "SEEKING",
    "cerco": "SEEKING",
    "offering": "OFFERING",
    "vendo": "OFFERING",
}

# Ordered source keys per canonical draft field; first non-null wins.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "cercoVendo": ("cercoVendo", "cerco_vendo", "direction"),
    "kind": ("kind", "type"),
    "title": ("title",),
    "location": ("location",),
    "origin": ("origin",),
    "destination": ("destination",),
    "route": ("route",),
    "checkIn": ("checkIn", "check_in"),
    "checkOut": ("checkOut", "check_out"),
    "departAt": ("departAt", "depart_at", "departureAt", "departure_at"),
    "arriveAt": ("arriveAt", "arrive_at", "arrivalAt", "arrival_at"),
    "returnAt": ("returnAt", "return_at"),
    "isNamedTicket": ("isNamedTicket", "is_named_ticket"),
    "travelerGender": ("travelerGender", "traveler_gender", "gender"),
    "bookingReference": ("bookingReference", "booking_reference", "pnr", "bookingCode", "booking_code"),
    "price": ("price", "amount", "total"),
    "imageUrl": ("imageUrl", "image_url", "image"),
}

_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:$|[T ])")
_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2})")
_ARROW_RE = re.compile(r"\s*(?:[-–—]*>|→|↦|⇒|➔|⟶)\s*")
_PRICE_RE = re.compile(r"^[+-]?[0-9]+(?:\.[0-9]+)?$")


def normalize_text(value: Any) -> Optional[str]:
    """Trim a value to text; blank becomes ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_date(value: Any) -> Optional[str]:
    """
    Coerce a date or date-time into ``YYYY-MM-DD``.

    Args:
        value: ``date``/``datetime`` instance or string such as
            ``"2025-05-01"`` or ``"2025-05-01 09:00"``.

    Returns:
        The date portion, or ``None`` when the shape is not 4-2-2 digits.
    """
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    text = normalize_text(value)
    if not text:
        return None
    match = _DATE_RE.match(text)
    return match.group(1) if match else None


def normalize_datetime(value: Any) -> Optional[str]:
    """
    Coerce a space- or ``T``-separated date-time into ``YYYY-MM-DDTHH:mm``.

    Seconds and anything after the minutes are dropped.
    """
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M")
    text = normalize_text(value)
    if not text:
        return None
    match = _DATETIME_RE.match(text)
    if not match:
        return None
    return f"{match.group(1)}T{match.group(2)}"


def normalize_price(value: Any) -> Optional[str]:
    """
    Coerce a price into a numeric string using ``.`` as decimal separator.

    The numeric text is returned as written (``"10.50"`` stays ``"10.50"``);
    non-finite or non-numeric input becomes ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).replace(",", ".").strip()
    return text if _PRICE_RE.match(text) else None


def pick_field(obj: Any, *keys: str) -> Any:
    """Return the first non-null value stored under any of ``keys``."""
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def pick_alias(obj: Any, field: str) -> Any:
    """Resolve a canonical draft field through its alias table."""
    return pick_field(obj, *FIELD_ALIASES.get(field, (field,)))


def normalize_kind(value: Any) -> Optional[str]:
    text = normalize_text(value)
    if not text:
        return None
    return KIND_TOKENS.get(text.lower())


def normalize_direction(value: Any) -> Optional[str]:
    text = normalize_text(value)
    if not text:
        return None
    return DIRECTION_TOKENS.get(text.lower())


def normalize_gender(value: Any) -> Optional[str]:
    text = normalize_text(value)
    if not text:
        return None
    text = text.upper()
    return text if text in {"M", "F"} else None


def normalize_bool(value: Any) -> Optional[bool]:
    """Tri-state boolean: real booleans and ``"true"``/``"false"`` strings only."""
    if isinstance(value, bool):
        return value
    text = normalize_text(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def normalize_route(value: Any) -> Optional[str]:
    """Rewrite any arrow variant into the ASCII ``-->`` separator."""
    text = normalize_text(value)
    if not text:
        return None
    return _ARROW_RE.sub("-->", text)


def make_route(origin: Any, destination: Any) -> Optional[str]:
    start = normalize_text(origin)
    end = normalize_text(destination)
    if not start and not end:
        return None
    if not end:
        return start
    if not start:
        return end
    return f"{start}-->{end}"


def truncate(value: Any, limit: int) -> Optional[str]:
    text = normalize_text(value)
    if text is None:
        return None
    return text[:limit]


def _bump_year(moment: datetime) -> datetime:
    try:
        return moment.replace(year=moment.year + 1)
    except ValueError:
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year + 1, day=28)


def roll_forward(value: Optional[str], now: datetime) -> Optional[str]:
    """
    Move a canonical date or date-time into the future relative to ``now``.

    Args:
        value: ``YYYY-MM-DD`` or ``YYYY-MM-DDTHH:mm`` string.
        now: Reference moment.

    Returns:
        The same format with the year bumped until it is after ``now``;
        unparseable input is returned unchanged.
    """
    if not value:
        return value
    has_time = "T" in value
    fmt = "%Y-%m-%dT%H:%M" if has_time else "%Y-%m-%d"
    try:
        moment = datetime.strptime(value, fmt)
    except ValueError:
        return value
    reference = now.replace(tzinfo=None) if now.tzinfo else now
    while moment <= reference:
        moment = _bump_year(moment)
    return moment.strftime(fmt)
