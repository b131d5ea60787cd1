# tests/test_scoring.py
from datetime import date

from marketplace_search.locations import locations_match
from marketplace_search.schemas import ListingOut, MatchType
from marketplace_search.scoring import DeterministicMatchScorer, RequestedCriteria, value_matches

scorer = DeterministicMatchScorer()


def listing(title="Kia Rio 2015", **attributes):
    return ListingOut(id=1, title=title, category_id=2, attributes=attributes)


def test_value_matches():
    assert value_matches({"min": 10, "max": 20}, 15)
    assert not value_matches({"max": 20}, 21)
    assert value_matches({"from": "2024-01-01"}, date(2024, 3, 1))
    assert value_matches(True, "yes")
    assert value_matches(["gps", "leather"], ["sunroof", "gps"])
    assert value_matches(2015, "2015")
    assert value_matches("Damascus", "دمشق")
    assert value_matches("whi", "White")
    assert not value_matches("petrol", None)
    assert not value_matches({"other": 1}, 5)


def test_nothing_requested_is_exact():
    match = scorer.score(RequestedCriteria(), listing())
    assert (match.score, match.match_type) == (100, MatchType.EXACT)


def test_all_criteria_matched():
    criteria = RequestedCriteria(filters={"price": {"max": 7_000_000}, "fuel": "diesel"}, keywords=("kia",))
    match = scorer.score(criteria, listing(price=6_500_000, fuel="diesel"))
    assert match.score == 100
    assert match.match_type == MatchType.EXACT
    assert match.matched == ["fuel", "price", "keywords"]


def test_partial_match():
    criteria = RequestedCriteria(filters={"price": {"max": 1_000}, "fuel": "diesel"}, keywords=("toyota",))
    match = scorer.score(criteria, listing(price=6_500_000, fuel="diesel"))
    assert match.score == 33
    assert match.match_type == MatchType.PARTIAL
    assert match.unmatched == ["price", "keywords"]


def test_no_match():
    match = scorer.score(RequestedCriteria(filters={"year": 2020}), listing())
    assert (match.score, match.match_type) == (0, MatchType.NO_MATCH)


def test_keywords_also_match_description():
    candidate = ListingOut(id=1, title="Kia Rio 2015", description="Kia Rio 2015 for sale", category_id=2)
    match = scorer.score(RequestedCriteria(keywords=("for sale",)), candidate)
    assert (match.score, match.matched) == (100, ["keywords"])


def test_locations_match():
    assert locations_match("Damascus", "دمشق")
    assert locations_match("Aleppo, Syria", "aleppo")
    assert not locations_match("Damascus", "Rural Damascus")
    assert not locations_match("sham", "hims")
    assert locations_match("Rural Damascus", "Rural Damascus Governorate")
