"""
Application configuration management.

Loads non-sensitive configuration from JSON and sensitive values
(e.g. Gemini API key) from environment variables or secret files.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from heuristic import DEFAULT_WEIGHTS, HeuristicWeights

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("listing_matcher_config.json")
DEFAULT_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class Settings:
    """Container for application configuration."""

    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    temperature: float = 0.0
    request_timeout_s: float = 20.0
    batch_size: int = 40
    title_limit: int = 120
    location_limit: int = 80
    description_limit: int = 400
    min_title_length: int = 8
    roll_dates_forward: bool = False
    heuristic: HeuristicWeights = field(default_factory=lambda: DEFAULT_WEIGHTS)
    listing_source_url: Optional[str] = None
    listing_source_key: Optional[str] = None
    log_file: Optional[Path] = None
    log_format: Optional[str] = None
    log_date_format: Optional[str] = None
    debug: bool = False


DEFAULT_SETTINGS = Settings()


def _read_json(path: Path) -> Dict[str, Any]:
    """Read a JSON file into a dictionary."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file missing: {path}") from None
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file: {path}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must hold a JSON object: {path}")
    return data


def _resolve_path(base: Path, value: Optional[str]) -> Optional[Path]:
    """Resolve a possibly relative path against a base directory."""
    if not value:
        return None
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base / candidate).resolve()


def _load_secret(base: Path, key_path: Optional[str]) -> Optional[str]:
    """Load a secret value from a text file."""
    if not key_path:
        return None
    secret_file = _resolve_path(base, key_path)
    if secret_file and secret_file.exists():
        return secret_file.read_text(encoding="utf-8").strip()
    LOGGER.warning("Secret file %s not found; skipping", secret_file)
    return None


def _positive(config: Dict[str, Any], key: str, default: float, cast=float):
    try:
        value = cast(config.get(key, default))
    except (TypeError, ValueError):
        raise ValueError(f"Config '{key}' must be a number.") from None
    if value <= 0:
        raise ValueError(f"Config '{key}' must be > 0.")
    return value


def _load_weights(section: Any) -> HeuristicWeights:
    if not section:
        return DEFAULT_WEIGHTS
    if not isinstance(section, dict):
        raise ValueError("Config 'heuristic' must be an object.")
    known = {item.name for item in fields(HeuristicWeights)}
    overrides = {}
    for key, value in section.items():
        if key not in known:
            raise ValueError(f"Unknown heuristic weight: {key}")
        try:
            overrides[key] = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Heuristic weight '{key}' must be a number.") from None
    return replace(DEFAULT_WEIGHTS, **overrides)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load application settings from config file and environment variables.

    Args:
        config_path: Path to the JSON configuration file. When omitted the
            default file is used if present, otherwise built-in defaults.

    Returns:
        Settings dataclass populated with configuration values.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH.resolve()
        config = _read_json(config_path) if config_path.exists() else {}
        if not config:
            LOGGER.debug("No configuration file at %s; using defaults", config_path)
    else:
        config_path = config_path.resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        config = _read_json(config_path)
    base_dir = config_path.parent

    secret_key = _load_secret(base_dir, config.get("gemini_api_key_file"))
    api_key = secret_key or os.environ.get("GEMINI_API_KEY", "").strip() or None
    if not api_key:
        LOGGER.info("Gemini API key not configured; AI features disabled")

    temperature = float(config.get("temperature", 0.0))
    if not 0.0 <= temperature <= 2.0:
        raise ValueError("Config 'temperature' must be between 0 and 2.")

    min_title_length = int(config.get("min_title_length", 8))
    if min_title_length < 0:
        raise ValueError("Config 'min_title_length' must be >= 0.")

    log_file_str = config.get("log_file")
    if log_file_str:
        # Replace timestamp placeholder if present
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file_str = log_file_str.replace("YYYYMMDD_HHMMSS", timestamp)
        log_file = _resolve_path(base_dir, log_file_str)
    else:
        log_file = None

    source_key = _load_secret(base_dir, config.get("listing_source_key_file"))
    source_key = source_key or os.environ.get("LISTING_SOURCE_KEY", "").strip() or None
    source_url = config.get("listing_source_url") or os.environ.get("LISTING_SOURCE_URL") or None

    return Settings(
        gemini_api_key=api_key,
        gemini_model=config.get("gemini_model", DEFAULT_MODEL),
        temperature=temperature,
        request_timeout_s=_positive(config, "request_timeout_s", 20.0),
        batch_size=_positive(config, "batch_size", 40, int),
        title_limit=_positive(config, "title_limit", 120, int),
        location_limit=_positive(config, "location_limit", 80, int),
        description_limit=_positive(config, "description_limit", 400, int),
        min_title_length=min_title_length,
        roll_dates_forward=bool(config.get("roll_dates_forward", False)),
        heuristic=_load_weights(config.get("heuristic")),
        listing_source_url=source_url,
        listing_source_key=source_key,
        log_file=log_file,
        log_format=config.get("log_format"),
        log_date_format=config.get("log_date_format"),
        debug=bool(config.get("debug", False)),
    )
