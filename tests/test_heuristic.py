import unittest

from data_models import CandidateListing, UserProfile
from heuristic import HeuristicWeights, clamp_score, score_heuristic


def user(**prefs):
    return UserProfile.from_dict({"id": "u1", "preferences": prefs})


def listing(listing_id, **fields):
    return CandidateListing.from_dict({"id": listing_id, **fields})


class HeuristicScoreTests(unittest.TestCase):
    def test_all_bonuses(self):
        profile = user(kinds=["RAIL"], maxPrice=100, location="milan")
        results = score_heuristic(profile, [listing("a", kind="RAIL", price=80, location="Milan Centrale")])

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].id, "a")
        self.assertEqual(results[0].score, 95)
        self.assertTrue(results[0].bidirectional)

    def test_base_score_only(self):
        profile = user(kinds=["LODGING"], maxPrice=50, location="roma")
        result = score_heuristic(profile, [listing("a", kind="RAIL", price=80, location="Milano")])[0]
        self.assertEqual(result.score, 60)
        self.assertFalse(result.bidirectional)

    def test_unbounded_price_still_requires_known_price(self):
        profile = user()
        results = score_heuristic(profile, [listing("priced", price=500), listing("unpriced")])
        scores = {result.id: result.score for result in results}
        self.assertEqual(scores, {"priced": 70, "unpriced": 60})

    def test_empty_location_preference_gives_no_bonus(self):
        profile = user(location="  ")
        result = score_heuristic(profile, [listing("a", location="Anywhere")])[0]
        self.assertEqual(result.score, 60)

    def test_legacy_preference_names(self):
        profile = UserProfile.from_dict({"id": "u", "prefs": {"types": ["train"], "maxPrice": "30,00"}})
        result = score_heuristic(profile, [listing("a", type="train", price="25")])[0]
        self.assertEqual(result.score, 85)
        self.assertTrue(result.bidirectional)

    def test_canonical_order_and_tie_break(self):
        profile = user(kinds=["RAIL"])
        candidates = [
            listing("c", kind="LODGING"),
            listing("b", kind="RAIL"),
            listing("a", kind="LODGING"),
            listing("d", kind="RAIL"),
        ]
        ids = [result.id for result in score_heuristic(profile, candidates)]
        self.assertEqual(ids, ["b", "d", "a", "c"])

    def test_order_independent_of_input_order(self):
        profile = user(kinds=["RAIL"], location="bari")
        candidates = [listing(str(i), kind="RAIL" if i % 2 else "LODGING", location="Bari" if i % 3 else "") for i in range(10)]
        forward = score_heuristic(profile, candidates)
        backward = score_heuristic(profile, list(reversed(candidates)))
        self.assertEqual(forward, backward)

    def test_deterministic(self):
        profile = user(kinds=["RAIL"], maxPrice=100)
        candidates = [listing("x", kind="RAIL", price=10), listing("y", price=200)]
        self.assertEqual(score_heuristic(profile, candidates), score_heuristic(profile, candidates))

    def test_empty_candidates(self):
        self.assertEqual(score_heuristic(user(), []), [])

    def test_weights_are_overridable(self):
        weights = HeuristicWeights(base=90, kind_bonus=20, bidirectional_threshold=101)
        profile = user(kinds=["RAIL"])
        result = score_heuristic(profile, [listing("a", kind="RAIL")], weights)[0]
        self.assertEqual(result.score, 100)
        self.assertFalse(result.bidirectional)


class ClampScoreTests(unittest.TestCase):
    def test_bounds_and_rounding(self):
        self.assertEqual(clamp_score(-5), 0)
        self.assertEqual(clamp_score(150), 100)
        self.assertEqual(clamp_score(72.5), 73)
        self.assertEqual(clamp_score(72.4), 72)
        self.assertEqual(clamp_score(float("nan")), 0)


if __name__ == "__main__":
    unittest.main()
