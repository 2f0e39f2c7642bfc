import json
import unittest

from config import Settings
from data_models import CandidateListing, MatchResult, UserProfile
from matcher import (
    ListingMatcher,
    batched,
    build_prompt,
    parse_model_array,
    score_listings,
    score_with_ai,
    validate_and_normalize,
)
from outcome import Outcome
from tests.fakes import FakeClient, prompt_payload, score_every_listing

USER = UserProfile.from_dict(
    {"id": "u1", "full_name": "Not Sent", "preferences": {"kinds": ["RAIL"], "location": "milan", "maxPrice": 100}}
)


def listings(*ids, **fields):
    return [CandidateListing.from_dict({"id": listing_id, **fields}) for listing_id in ids]


class ValidateAndNormalizeTests(unittest.TestCase):
    def test_clamps_and_coerces(self):
        raw = [
            {"id": "a", "score": 150, "bidirectional": "yes"},
            {"id": "b", "score": -3, "bidirectional": 0},
            {"id": "c", "score": "NaN", "bidirectional": "false"},
            {"id": "d", "score": "61.6", "bidirectional": 1},
        ]
        results = validate_and_normalize(raw, {"a", "b", "c", "d"})
        self.assertEqual(
            results,
            [
                MatchResult("a", 100, True),
                MatchResult("d", 62, True),
                MatchResult("b", 0, False),
                MatchResult("c", 0, False),
            ],
        )

    def test_drops_unknown_ids_and_duplicates(self):
        raw = [
            {"id": "ghost", "score": 99, "bidirectional": True},
            {"id": "a", "score": 40, "bidirectional": False},
            {"id": "a", "score": 90, "bidirectional": True},
            "garbage",
            {"score": 50},
        ]
        self.assertEqual(validate_and_normalize(raw, {"a"}), [MatchResult("a", 40, False)])

    def test_non_list_is_empty(self):
        self.assertEqual(validate_and_normalize({"id": "a"}, {"a"}), [])

    def test_numeric_ids_match_string_ids(self):
        self.assertEqual(validate_and_normalize([{"id": 7, "score": 10}], {"7"}), [MatchResult("7", 10, False)])


class ParseModelArrayTests(unittest.TestCase):
    def test_direct(self):
        self.assertEqual(parse_model_array(' [{"id": "a"}] ').value, [{"id": "a"}])

    def test_embedded_in_prose(self):
        text = 'Sure! Here you go:\n```json\n[{"id": "a", "score": 5}]\n```\nHope [this] helps'
        outcome = parse_model_array(text)
        self.assertFalse(outcome.degraded)
        self.assertEqual(outcome.value, [{"id": "a", "score": 5}])

    def test_no_array(self):
        outcome = parse_model_array("no idea")
        self.assertTrue(outcome.degraded)
        self.assertEqual(outcome.value, [])


class PromptTests(unittest.TestCase):
    def test_projection_truncates_but_keeps_id(self):
        long_id = "id-" + "x" * 300
        candidate = CandidateListing.from_dict(
            {"id": long_id, "title": "T" * 50, "location": "L" * 50, "description": "D" * 50, "price": 12, "type": "hotel"}
        )
        settings = Settings(title_limit=10, location_limit=5, description_limit=20)
        payload = prompt_payload(build_prompt(USER, [candidate], settings))

        item = payload["listings"][0]
        self.assertEqual(item["id"], long_id)
        self.assertEqual(len(item["title"]), 10)
        self.assertEqual(len(item["location"]), 5)
        self.assertEqual(len(item["description"]), 20)
        self.assertEqual(item["kind"], "LODGING")

    def test_user_projection_has_only_id_and_preferences(self):
        payload = prompt_payload(build_prompt(USER, [], Settings()))
        self.assertEqual(set(payload["user"]), {"id", "preferences"})
        self.assertEqual(payload["user"]["preferences"]["kinds"], ["RAIL"])

    def test_batched(self):
        self.assertEqual(batched([1, 2, 3, 4, 5], 2), [[1, 2], [3, 4], [5]])
        self.assertEqual(batched([], 40), [])


class ScoreWithAITests(unittest.TestCase):
    def test_gap_fill_scenario(self):
        client = FakeClient('[{"id":"x","score":150,"bidirectional":"yes"}]')
        results = score_with_ai(USER, listings("x", "y"), client)
        self.assertEqual(results, [MatchResult("x", 100, True), MatchResult("y", 0, False)])

    def test_preconditions(self):
        self.assertIsNone(score_with_ai(USER, listings("a"), None))
        client = FakeClient()
        self.assertIsNone(score_with_ai(USER, [], client))
        self.assertEqual(client.calls, [])

    def test_retries_once_when_reply_is_not_an_array(self):
        client = FakeClient("Let me think...", '[{"id": "a", "score": 70}]')
        results = score_with_ai(USER, listings("a"), client)
        self.assertEqual(results, [MatchResult("a", 70, False)])
        self.assertEqual(len(client.calls), 2)
        self.assertEqual(client.calls[0]["message"], client.calls[1]["message"])

    def test_no_second_retry(self):
        client = FakeClient("nope", "still nope", '[{"id": "a", "score": 70}]')
        self.assertIsNone(score_with_ai(USER, listings("a"), client))
        self.assertEqual(len(client.calls), 2)

    def test_timeout_then_retry(self):
        client = FakeClient(Outcome.fallback("", "timeout"), '[{"id": "a", "score": 55}]')
        self.assertEqual(score_with_ai(USER, listings("a"), client), [MatchResult("a", 55, False)])

    def test_prose_wrapped_array_is_recovered_without_retry(self):
        client = FakeClient('[ranked]\n[{"id": "a", "score": 80, "bidirectional": true}]')
        self.assertEqual(score_with_ai(USER, listings("a"), client), [MatchResult("a", 80, True)])
        self.assertEqual(len(client.calls), 1)

    def test_batches_and_partial_failure(self):
        client = FakeClient(
            score_every_listing(score=70),
            RuntimeError("boom"),
            score_every_listing(score=90, bidirectional=True),
        )
        candidates = listings("e", "d", "c", "b", "a")
        results = score_with_ai(USER, candidates, client, Settings(batch_size=2))

        self.assertEqual(len(client.calls), 3)
        self.assertEqual(
            results,
            [
                MatchResult("a", 90, True),
                MatchResult("d", 70, False),
                MatchResult("e", 70, False),
                MatchResult("b", 0, False),
                MatchResult("c", 0, False),
            ],
        )

    def test_all_batches_fail_returns_none(self):
        client = FakeClient("x", "y", "[]", "[]")
        self.assertIsNone(score_with_ai(USER, listings("a", "b"), client, Settings(batch_size=1)))

    def test_hallucinated_ids_only_returns_none(self):
        client = FakeClient('[{"id": "ghost", "score": 90}]')
        self.assertIsNone(score_with_ai(USER, listings("a"), client))

    def test_cardinality_and_range(self):
        ids = [f"l{i:02d}" for i in range(23)]

        def noisy(message):
            sent = [item["id"] for item in prompt_payload(message)["listings"]]
            entries = [{"id": listing_id, "score": (i * 37) % 250 - 50} for i, listing_id in enumerate(sent)]
            entries += [{"id": sent[0], "score": 1}, {"id": "invented", "score": 100}]
            return json.dumps(entries[1:])

        client = FakeClient(*[noisy] * 5)
        results = score_with_ai(USER, listings(*ids), client, Settings(batch_size=5))

        self.assertEqual(sorted(result.id for result in results), ids)
        for result in results:
            self.assertIsInstance(result.score, int)
            self.assertTrue(0 <= result.score <= 100)
        keys = [(-result.score, result.id) for result in results]
        self.assertEqual(keys, sorted(keys))


class ScoreListingsTests(unittest.TestCase):
    def test_falls_back_to_heuristic(self):
        candidates = listings("a", kind="RAIL", price=80, location="Milan Centrale")
        results, source = score_listings(USER, candidates, FakeClient("garbage", "garbage"))
        self.assertEqual(source, "heuristic")
        self.assertEqual(results, [MatchResult("a", 95, True)])

    def test_prefers_ai(self):
        results, source = score_listings(USER, listings("a"), FakeClient('[{"id": "a", "score": 12}]'))
        self.assertEqual(source, "ai")
        self.assertEqual(results, [MatchResult("a", 12, False)])

    def test_listing_matcher_without_key_uses_heuristic(self):
        matcher = ListingMatcher(Settings())
        self.assertFalse(matcher.ai_enabled)
        results, source = matcher.score(USER, listings("a", "b"))
        self.assertEqual(source, "heuristic")
        self.assertEqual(len(results), 2)


if __name__ == "__main__":
    unittest.main()
