"""
HTTP surface for listing extraction and matching.

Run with ``uvicorn api:create_app --factory``.
"""

from __future__ import annotations

import functools
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings, load_settings
from data_models import CandidateListing, UserProfile, ensure_unique_ids
from matcher import ListingMatcher

LOGGER = logging.getLogger(__name__)


class InvalidRequest(Exception):
    """The caller broke the request contract; surfaced as a 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message}})


def safe_handler(func):
    """
    Map caller errors to 400 and unexpected failures to a logged 500.

    Model failures never reach here; the matcher absorbs them.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except InvalidRequest as exc:
            LOGGER.warning("Rejected request: %s", exc.message)
            return _error(400, exc.message)
        except Exception as exc:
            LOGGER.exception("Unhandled exception in handler: %s", exc)
            return _error(500, "Server error")

    return wrapper


# -------------------------
# Pydantic response models
# -------------------------
class MatchOut(BaseModel):
    id: str
    title: str
    location: str
    type: Optional[str]
    score: int
    bidirectional: bool


class MatchesResponse(BaseModel):
    matches: List[MatchOut]
    source: str


async def _json_object(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequest("Body must be valid JSON") from None
    if not isinstance(body, dict):
        raise InvalidRequest("Body must be a JSON object")
    return body


def _parse_match_request(body: dict) -> tuple:
    user_raw = body.get("user")
    if not isinstance(user_raw, dict):
        raise InvalidRequest("'user' is required and must be an object")
    listings_raw: Any = body.get("listings")
    if not isinstance(listings_raw, list):
        raise InvalidRequest("'listings' must be an array")

    user = UserProfile.from_dict(user_raw)
    try:
        candidates = ensure_unique_ids(CandidateListing.from_dict(item) for item in listings_raw)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from None
    return user, candidates


def create_app(settings: Optional[Settings] = None, client=None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings; loaded from config/env when omitted.
        client: Completion client override (tests inject fakes here).
    """
    settings = settings or load_settings()
    matcher = ListingMatcher(settings, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        matcher.close()

    app = FastAPI(title="Listing Matcher API", version="0.1.0", lifespan=lifespan)
    app.state.matcher = matcher
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", tags=["meta"])
    async def healthz():
        return {"status": "ok", "ai": matcher.ai_enabled}

    @app.post("/matches", response_model=MatchesResponse, tags=["matching"])
    @safe_handler
    async def post_matches(request: Request):
        user, candidates = _parse_match_request(await _json_object(request))
        results, source = await run_in_threadpool(matcher.score, user, candidates)

        by_id = {listing.id: listing for listing in candidates}
        matches = [
            MatchOut(
                id=result.id,
                title=by_id[result.id].title,
                location=by_id[result.id].location,
                type=by_id[result.id].kind.value if by_id[result.id].kind else None,
                score=result.score,
                bidirectional=result.bidirectional,
            )
            for result in results
        ]
        return MatchesResponse(matches=matches, source=source)

    @app.post("/ai/parse-description", tags=["extraction"])
    @safe_handler
    async def parse_description(request: Request):
        body = await _json_object(request)
        text = body.get("text")
        if text is not None and not isinstance(text, str):
            raise InvalidRequest("'text' must be a string")
        locale = body.get("locale") or "it"
        if not isinstance(locale, str):
            raise InvalidRequest("'locale' must be a string")
        draft = await run_in_threadpool(matcher.extract, text, locale)
        return {"ok": True, "data": draft.to_dict()}

    return app
