"""
LLM client wrapper for listing extraction and compatibility scoring.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Any, Optional

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from outcome import Outcome

LOGGER = logging.getLogger(__name__)

_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def _dig(obj: Any, *path: Any) -> Any:
    """Follow keys, indexes or attributes; ``None`` on the first miss."""
    current = obj
    for step in path:
        if current is None:
            return None
        try:
            if isinstance(step, int):
                if isinstance(current, (str, bytes)) or not isinstance(current, Sequence):
                    current = list(current)
                current = current[step] if len(current) > step else None
            elif isinstance(current, Mapping):
                current = current.get(step)
            else:
                current = getattr(current, step, None)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError):
            return None
    return current


def _joined_parts(parts: Any) -> Optional[str]:
    if not parts:
        return None
    try:
        texts = [_dig(part, "text") for part in parts]
    except TypeError:
        return None
    joined = "".join(text for text in texts if isinstance(text, str))
    return joined or None


def extract_text(response: Any) -> str:
    """
    Read the text payload from whichever envelope shape the client returned.

    Args:
        response: Gemini ``GenerateContentResponse``, a plain string, or a
            dict shaped like other completion APIs.

    Returns:
        Stripped text, or an empty string when nothing usable is found.
    """
    if response is None:
        return ""
    if isinstance(response, str):
        return response.strip()

    candidates = (
        ("text",),
        ("output_text",),
        ("result",),
        ("output", 0, "content", 0, "text"),
        ("choices", 0, "message", "content"),
    )
    for path in candidates:
        # Gemini raises ValueError from .text when the candidate has no parts
        value = _dig(response, *path)
        if isinstance(value, str) and value.strip():
            return value.strip()

    parts_text = _joined_parts(_dig(response, "candidates", 0, "content", "parts"))
    if parts_text:
        return parts_text.strip()

    LOGGER.error("Unexpected response format from Gemini: %s", type(response))
    return ""


class GeminiClient:
    """Wrapper around the Google Gemini API with a soft timeout on every call."""

    def __init__(
        self,
        api_key: str,
        model_name: str,
        temperature: float = 0.0,
        timeout_s: float = 20.0,
    ) -> None:
        """
        Initialize the Gemini client.

        Args:
            api_key: Google Gemini API key.
            model_name: Name of the Gemini model to use.
            temperature: Sampling temperature; kept low for repeatable output.
            timeout_s: Seconds before a pending call is abandoned.
        """
        genai.configure(api_key=api_key)
        self._model_name = model_name
        self._timeout_s = timeout_s
        self._generation_config = {
            "temperature": temperature,
            "top_p": 0.9,
            "candidate_count": 1,
        }
        self._safety_settings = {
            getattr(HarmCategory, name): HarmBlockThreshold.BLOCK_NONE
            for name in _SAFETY_CATEGORIES
        }
        self._closed = False
        LOGGER.info("Gemini client initialized with model %s", self._model_name)

    @property
    def model_name(self) -> str:
        return self._model_name

    def complete(
        self,
        system: str,
        message: str,
        response_schema: Optional[dict] = None,
    ) -> str:
        """
        Issue one completion request and return the response text.

        Args:
            system: System instruction.
            message: User message.
            response_schema: Optional Gemini response schema; forces JSON output.

        Returns:
            Response text (possibly empty).
        """
        generation_config = dict(self._generation_config)
        if response_schema is not None:
            generation_config["response_mime_type"] = "application/json"
            generation_config["response_schema"] = response_schema
        model = genai.GenerativeModel(self._model_name, system_instruction=system)
        response = model.generate_content(
            message,
            generation_config=generation_config,
            safety_settings=self._safety_settings,
            request_options={"timeout": self._timeout_s},
        )
        text = extract_text(response)
        LOGGER.debug("Raw LLM response (first 200 chars): %s", text[:200])
        return text

    def _run(self, future: Future, system: str, message: str, response_schema: Optional[dict]) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(self.complete(system, message, response_schema))
        except Exception as exc:
            future.set_exception(exc)

    def complete_with_timeout(
        self,
        system: str,
        message: str,
        response_schema: Optional[dict] = None,
    ) -> Outcome[str]:
        """
        Race :meth:`complete` against the configured timeout.

        The first of the two branches to finish wins: either the call returns
        (or fails), or the timer elapses and an empty result is used. Each call
        runs on its own daemon thread, so a hung call never delays the next
        one; the request itself carries the same timeout and ends shortly
        after being abandoned.

        Returns:
            ``Outcome.ok(text)`` on success, otherwise a degraded empty string.
        """
        if self._closed:
            return Outcome.fallback("", "client closed")
        future = Future()
        worker = threading.Thread(
            target=self._run,
            args=(future, system, message, response_schema),
            name="gemini-call",
            daemon=True,
        )
        worker.start()
        done, _ = wait([future], timeout=self._timeout_s, return_when=FIRST_COMPLETED)
        if future not in done:
            LOGGER.warning("Gemini call timed out after %.1fs", self._timeout_s)
            return Outcome.fallback("", "timeout")
        try:
            return Outcome.ok(future.result())
        except Exception as exc:
            LOGGER.warning("Gemini call failed: %s", str(exc)[:200])
            return Outcome.fallback("", f"error: {str(exc)[:200]}")

    def close(self) -> None:
        self._closed = True


def build_client(settings) -> Optional[GeminiClient]:
    """
    Create a client from settings, or ``None`` when no API key is configured.

    Args:
        settings: Application settings dataclass.
    """
    if not settings.gemini_api_key:
        LOGGER.info("No Gemini API key; language-model features disabled")
        return None
    return GeminiClient(
        settings.gemini_api_key,
        settings.gemini_model,
        temperature=settings.temperature,
        timeout_s=settings.request_timeout_s,
    )
