"""
Free-text listing extraction backed by a schema-constrained model call.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from canonical import (
    make_route,
    normalize_bool,
    normalize_date,
    normalize_datetime,
    normalize_direction,
    normalize_gender,
    normalize_kind,
    normalize_price,
    normalize_route,
    normalize_text,
    pick_alias,
    roll_forward,
)
from config import DEFAULT_SETTINGS, Settings
from data_models import EMPTY_DRAFT, Direction, Kind, ListingDraft
from outcome import Outcome

LOGGER = logging.getLogger(__name__)

KIND_LABELS = MappingProxyType({Kind.LODGING: "hotel", Kind.RAIL: "rail"})
CURRENCY_SYMBOL = "€"
BOOKING_REFERENCE_RE = re.compile(r"^[A-Z0-9]{5,8}$")

_NULLABLE_TEXT = {"type": ["string", "null"]}

LISTING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "cercoVendo": {"type": ["string", "null"], "enum": ["SEEKING", "OFFERING", None]},
        "kind": {"type": ["string", "null"], "enum": ["LODGING", "RAIL", None]},
        "title": _NULLABLE_TEXT,
        "location": _NULLABLE_TEXT,
        "origin": _NULLABLE_TEXT,
        "destination": _NULLABLE_TEXT,
        "checkIn": {"type": ["string", "null"], "description": "YYYY-MM-DD"},
        "checkOut": {"type": ["string", "null"], "description": "YYYY-MM-DD"},
        "departAt": {"type": ["string", "null"], "description": "YYYY-MM-DD HH:mm"},
        "arriveAt": {"type": ["string", "null"], "description": "YYYY-MM-DD HH:mm"},
        "returnAt": {"type": ["string", "null"], "description": "YYYY-MM-DD HH:mm, rail only"},
        "isNamedTicket": {"type": ["boolean", "null"]},
        "travelerGender": {"type": ["string", "null"], "enum": ["M", "F", None]},
        "bookingReference": _NULLABLE_TEXT,
        "price": {"type": ["string", "number", "null"]},
        "imageUrl": _NULLABLE_TEXT,
    },
    "required": [
        "cercoVendo", "kind", "title",
        "location", "origin", "destination",
        "checkIn", "checkOut",
        "departAt", "arriveAt", "returnAt",
        "isNamedTicket", "travelerGender", "bookingReference", "price",
        "imageUrl",
    ],
}

SYSTEM_PROMPT = """You parse travel listing descriptions into JSON.
Return ONLY a JSON object that matches the schema below exactly: every key is
always present, no extra keys. If a value is missing or doubtful, use null.
Never invent information.

Rules:
- "kind": "LODGING" for hotel stays, "RAIL" for train tickets, otherwise null.
- "cercoVendo": "SEEKING" if the author is looking for something, "OFFERING"
  if they are selling or giving it away, otherwise null.
- Rail: "origin" and "destination" are station or city names; "location" is
  "<origin>--><destination>" using the ASCII arrow "-->".
- Lodging: "location" is the town or place name.
- Lodging dates: "checkIn"/"checkOut" as "YYYY-MM-DD".
- Rail times: "departAt"/"arriveAt"/"returnAt" as "YYYY-MM-DD HH:mm" (24h).
- If only day and month are given, use the first such date after "today".
- "isNamedTicket": true if the ticket is explicitly personal/named, false if
  explicitly not named, otherwise null.
- "travelerGender": "M" or "F" only for named tickets, otherwise null.
- "bookingReference": the 5-8 character alphanumeric booking code, or null.
- "price": a number or numeric string, never put it in the title.
- "title": short and factual; null if unsure.
- Keep place names with their natural accents and capitalization.
- Write free-text values in the language given as "Locale".

Schema:
""" + json.dumps(LISTING_SCHEMA, indent=1)

_EMPTY_WIRE = MappingProxyType({key: None for key in LISTING_SCHEMA["required"]})


def gemini_schema(schema: Mapping[str, Any] = LISTING_SCHEMA) -> Dict[str, Any]:
    """
    Derive the schema subset accepted by the Gemini API.

    Gemini has no ``additionalProperties`` and expresses optional values as
    ``nullable`` rather than a ``null`` type, so union types collapse to
    their first non-null member and ``null`` is dropped from enums.
    """
    properties: Dict[str, Any] = {}
    for name, prop in schema["properties"].items():
        types = prop["type"] if isinstance(prop["type"], list) else [prop["type"]]
        concrete = [item for item in types if item != "null"]
        converted: Dict[str, Any] = {"type": concrete[0].upper()}
        if "null" in types:
            converted["nullable"] = True
        if "enum" in prop:
            converted["enum"] = [item for item in prop["enum"] if item is not None]
            converted["format"] = "enum"
        if "description" in prop:
            converted["description"] = prop["description"]
        properties[name] = converted
    return {
        "type": "OBJECT",
        "properties": properties,
        "required": list(schema["required"]),
    }


def build_message(text: str, locale: str, now: datetime) -> str:
    return (
        f"Today: {now:%Y-%m-%d %H:%M}\n"
        f"Locale: {locale}\n"
        f'Listing text:\n"""{text}"""\n'
        "Reply ONLY with JSON matching the schema."
    )


def synthesize_title(
    direction: Optional[Direction],
    kind: Optional[Kind],
    location: str,
    date: str,
    price: str,
) -> Optional[str]:
    """
    Build ``<direction> <kind-label> <location> <date> <price?>``.

    Returns:
        The title, or ``None`` when direction, kind or location is unknown.
    """
    label = KIND_LABELS.get(kind) if kind else None
    if not direction or not label or not location:
        return None
    parts = [direction.value, label, location]
    if date:
        parts.append(date)
    if price:
        parts.append(f"{CURRENCY_SYMBOL}{price}")
    return " ".join(parts)


def _booking_reference(value: Any) -> str:
    text = normalize_text(value)
    if not text:
        return ""
    code = "".join(text.split()).upper()
    return code if BOOKING_REFERENCE_RE.match(code) else ""


def sanitize(
    raw: Mapping[str, Any],
    settings: Settings = DEFAULT_SETTINGS,
    now: Optional[datetime] = None,
) -> ListingDraft:
    """
    Canonicalize a parsed model reply into a ListingDraft.

    Args:
        raw: Parsed JSON object from the model (keys may be camelCase,
            snake_case or legacy names).
        settings: Supplies the title threshold and date roll-forward flag.
        now: Reference time for the optional date roll-forward.

    Returns:
        A complete draft with out-of-kind fields cleared.
    """
    merged = {**_EMPTY_WIRE, **raw}

    direction_token = normalize_direction(pick_alias(merged, "cercoVendo"))
    kind_token = normalize_kind(pick_alias(merged, "kind"))
    direction = Direction(direction_token) if direction_token else None
    kind = Kind(kind_token) if kind_token else None

    origin = normalize_text(pick_alias(merged, "origin")) or ""
    destination = normalize_text(pick_alias(merged, "destination")) or ""
    location = normalize_text(pick_alias(merged, "location")) or ""
    if kind is Kind.RAIL:
        route = normalize_route(pick_alias(merged, "route")) or make_route(origin, destination)
        location = normalize_route(route) or normalize_route(location) or ""

    check_in = normalize_date(pick_alias(merged, "checkIn")) or ""
    check_out = normalize_date(pick_alias(merged, "checkOut")) or ""
    depart_at = normalize_datetime(pick_alias(merged, "departAt")) or ""
    arrive_at = normalize_datetime(pick_alias(merged, "arriveAt")) or ""
    return_at = normalize_datetime(pick_alias(merged, "returnAt"))

    if settings.roll_dates_forward:
        moment = now or datetime.now()
        check_in = roll_forward(check_in, moment)
        check_out = roll_forward(check_out, moment)
        depart_at = roll_forward(depart_at, moment)
        arrive_at = roll_forward(arrive_at, moment)
        return_at = roll_forward(return_at, moment)

    is_named_ticket = normalize_bool(pick_alias(merged, "isNamedTicket"))
    gender = normalize_gender(pick_alias(merged, "travelerGender"))
    booking_reference = _booking_reference(pick_alias(merged, "bookingReference"))
    price = normalize_price(pick_alias(merged, "price")) or ""
    image_url = normalize_text(pick_alias(merged, "imageUrl")) or ""

    if kind is Kind.LODGING:
        origin = destination = ""
        depart_at = arrive_at = ""
        return_at = None
        is_named_ticket = None
        booking_reference = ""
    elif kind is Kind.RAIL:
        check_in = check_out = ""
    if is_named_ticket is not True:
        gender = None

    title = normalize_text(pick_alias(merged, "title")) or ""
    if len(title) < settings.min_title_length:
        date = check_in if kind is Kind.LODGING else depart_at[:10]
        title = synthesize_title(direction, kind, location, date, price) or title

    return ListingDraft(
        cerco_vendo=direction,
        kind=kind,
        title=title,
        location=location,
        origin=origin,
        destination=destination,
        check_in=check_in,
        check_out=check_out,
        depart_at=depart_at,
        arrive_at=arrive_at,
        is_named_ticket=is_named_ticket,
        traveler_gender=gender,
        booking_reference=booking_reference,
        price=price,
        image_url=image_url,
        return_at=return_at or None,
    )


def parse_reply(text: str) -> Outcome[Dict[str, Any]]:
    """Parse the model text as a JSON object; anything else degrades to ``{}``."""
    try:
        data = json.loads(text or "")
    except (json.JSONDecodeError, TypeError) as exc:
        LOGGER.warning("Extractor reply is not valid JSON: %s. Raw (first 200 chars): %s", exc, (text or "")[:200])
        return Outcome.fallback({}, "invalid json")
    if not isinstance(data, dict):
        LOGGER.warning("Extractor reply is not a JSON object: %s", type(data).__name__)
        return Outcome.fallback({}, "not an object")
    return Outcome.ok(data)


def _request_draft(
    client, text: str, locale: str, settings: Settings, now: datetime
) -> Outcome[ListingDraft]:
    if client is None:
        return Outcome.fallback(EMPTY_DRAFT, "no client configured")
    reply = client.complete_with_timeout(
        SYSTEM_PROMPT,
        build_message(text, locale, now),
        response_schema=gemini_schema(),
    )
    if reply.degraded:
        return Outcome.fallback(EMPTY_DRAFT, reply.reason or "model call failed")
    parsed = parse_reply(reply.value)
    if parsed.degraded:
        return Outcome.fallback(EMPTY_DRAFT, parsed.reason or "unparseable reply")
    return Outcome.ok(sanitize(parsed.value, settings, now))


def extract(
    free_text: Any,
    locale: str = "it",
    client=None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> ListingDraft:
    """
    Turn a free-text listing description into a canonical ListingDraft.

    Never raises: every failure yields the all-empty draft.

    Args:
        free_text: User prose; blank text returns immediately without a call.
        locale: Language tag steering the model's output language.
        client: Completion client (``GeminiClient`` or compatible); ``None``
            means AI is not configured.
        settings: Application settings, defaults when omitted.
        now: Reference time for the prompt and date roll-forward.

    Returns:
        The extracted draft, or ``EMPTY_DRAFT``.
    """
    try:
        text = normalize_text(free_text)
        if not text:
            return EMPTY_DRAFT
        outcome = _request_draft(
            client,
            text,
            normalize_text(locale) or "it",
            settings or DEFAULT_SETTINGS,
            now or datetime.now(),
        )
    except Exception:
        LOGGER.exception("Description extraction failed; returning empty draft")
        return EMPTY_DRAFT
    if outcome.degraded:
        LOGGER.warning("Description extraction degraded: %s", outcome.reason)
    return outcome.unwrap()
