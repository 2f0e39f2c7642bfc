"""
Utilities for loading user profiles and candidate listings from JSON files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

from data_models import CandidateListing, UserProfile, ensure_unique_ids


def _read(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_profile(path: Path) -> UserProfile:
    """
    Load a user profile from a JSON file.

    Args:
        path: Location of the profile JSON file.

    Returns:
        Parsed UserProfile.
    """
    return UserProfile.from_dict(_read(path))


def load_listings(path: Path) -> List[CandidateListing]:
    """
    Load candidate listings from a JSON file.

    The file holds either a list of listings or ``{"listings": [...]}``.

    Raises:
        ValueError: If the payload has no listing array, a listing lacks an id,
            or two listings share an id.
    """
    data = _read(path)
    if isinstance(data, dict):
        data = data.get("listings")
    if not isinstance(data, list):
        raise ValueError(f"No listing array in {path}")
    return ensure_unique_ids(CandidateListing.from_dict(item) for item in data)
