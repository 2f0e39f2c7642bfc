"""Scripted stand-ins for the completion client."""

from __future__ import annotations

import json

from outcome import Outcome


class FakeClient:
    """Replays scripted replies; each reply is text, an Outcome, an exception or a callable."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def complete_with_timeout(self, system, message, response_schema=None):
        self.calls.append({"system": system, "message": message, "response_schema": response_schema})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, Outcome):
            return reply
        if callable(reply):
            return Outcome.ok(reply(message))
        return Outcome.ok(reply)


def prompt_payload(message):
    """Decode the JSON payload embedded in a scoring prompt."""
    return json.loads(message.split("Input:\n", 1)[1])


def score_every_listing(score=70, bidirectional=False):
    def reply(message):
        listings = prompt_payload(message)["listings"]
        return json.dumps(
            [{"id": item["id"], "score": score, "bidirectional": bidirectional} for item in listings]
        )

    return reply
