"""
Read-only access to persisted listings and profiles over a PostgREST API.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from data_models import CandidateListing, UserProfile

LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT_S = 30
LISTING_COLUMNS = "id,user_id,status,type,title,location,price,description"
PROFILE_COLUMNS = "id,full_name,prefs"


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }


def _get_rows(base_url: str, api_key: str, table: str, params: Dict[str, str]) -> List[Any]:
    url = f"{base_url.rstrip('/')}/rest/v1/{table}"
    try:
        response = requests.get(url, headers=_headers(api_key), params=params, timeout=REQUEST_TIMEOUT_S)
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.error("Failed to fetch %s: %s", table, exc)
        raise
    rows = response.json()
    if not isinstance(rows, list):
        raise ValueError(f"Unexpected payload from {table}: expected a list")
    return rows


def fetch_candidate_listings(
    base_url: str,
    api_key: str,
    exclude_owner: Optional[str] = None,
    limit: int = 300,
) -> List[CandidateListing]:
    """
    Fetch active listings, newest first.

    Args:
        base_url: Project URL of the REST endpoint.
        api_key: Service key sent as ``apikey`` and bearer token.
        exclude_owner: Owner whose own listings are left out.
        limit: Maximum number of rows.

    Returns:
        Candidate listings; rows without an id are skipped.
    """
    params = {
        "select": LISTING_COLUMNS,
        "status": "eq.active",
        "order": "created_at.desc",
        "limit": str(limit),
    }
    if exclude_owner:
        params["user_id"] = f"neq.{exclude_owner}"

    listings: List[CandidateListing] = []
    for index, row in enumerate(_get_rows(base_url, api_key, "listings", params), start=1):
        try:
            listings.append(CandidateListing.from_dict(row))
        except ValueError as exc:
            LOGGER.warning("Skipping listing row %d: %s", index, exc)

    LOGGER.info("Fetched %d candidate listings", len(listings))
    return listings


def fetch_user_profile(base_url: str, api_key: str, user_id: str) -> Optional[UserProfile]:
    """Fetch one profile by id; ``None`` when it does not exist."""
    params = {"select": PROFILE_COLUMNS, "id": f"eq.{user_id}", "limit": "1"}
    rows = _get_rows(base_url, api_key, "profiles", params)
    if not rows:
        LOGGER.warning("Profile %s not found", user_id)
        return None
    return UserProfile.from_dict(rows[0])
