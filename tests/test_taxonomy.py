# tests/test_taxonomy.py
import pytest
from sqlalchemy.exc import OperationalError

from marketplace_search import crud, utils
from marketplace_search.errors import SearchInfrastructureError
from marketplace_search.taxonomy import TaxonomyHolder, TaxonomyIndex, TaxonomyResolver

from conftest import (
    ALEPPO, APARTMENTS, CARS, DAMASCUS, JARAMANA, MOTORCYCLES, TRUCKS, VEHICLES,
    category_rows, city_rows,
)


@pytest.fixture
def resolver(index):
    return TaxonomyResolver(TaxonomyHolder(index))


def test_index_marks_leaves_and_rolls_up_counts(index):
    assert index.get("cars").is_leaf
    assert not index.get("vehicles").is_leaf
    assert index.get("jobs").is_leaf
    assert index.get("vehicles").listing_count == 8
    assert index.leaf_ids_under(VEHICLES) == [CARS, MOTORCYCLES, TRUCKS]


def test_ancestors(index):
    assert index.ancestor_ids(CARS) == frozenset({VEHICLES})
    assert index.ancestor_ids(VEHICLES) == frozenset()
    assert index.descends_from(CARS, VEHICLES)
    assert not index.descends_from(VEHICLES, CARS)


def test_keywords_only_map_to_leaves():
    index = TaxonomyIndex.from_rows(
        category_rows(),
        [{"category_id": VEHICLES, "keyword": "wheels", "language": "en"},
         {"category_id": CARS, "keyword": "Sedan", "language": "en"}],
        [], {},
    )
    assert "wheels" not in index.keywords
    assert index.keywords["sedan"] == "cars"


def test_keyword_hit_resolves_leaf_with_high_confidence(resolver):
    result = resolver.resolve_local("سيارة")
    assert result.slug == "cars"
    assert result.is_leaf
    assert result.confidence >= 75

    assert resolver.resolve_local("car", "en").slug == "cars"
    assert resolver.resolve_local("bike", "en").slug == "motorcycles"


def test_exact_name_match(resolver, index):
    result = resolver.resolve_local("Motorcycles", "en")
    assert result.slug == "motorcycles"
    assert result.name == "Motorcycles"
    assert result.confidence == pytest.approx(
        resolver.confidence(index.get("motorcycles"), resolver.EXACT_NAME), abs=0.01
    )


def test_arabic_name_without_diacritics(resolver):
    assert resolver.resolve_local("شُقق").slug == "apartments"


def test_compound_match_beats_single_words(resolver, index):
    result = resolver.resolve_local("دراجات نارية مستعملة")
    assert result.slug == "motorcycles"
    single = resolver.confidence(index.get("motorcycles"), resolver.EXACT_NAME)
    assert result.confidence == pytest.approx(single + resolver.COMPOUND_BONUS, abs=0.01)


def test_non_leaf_still_resolves_when_confident(resolver):
    result = resolver.resolve_local("Vehicles", "en")
    assert result.slug == "vehicles"
    assert not result.is_leaf


def test_unknown_term_returns_none(resolver):
    assert resolver.resolve_local("xyz") is None
    assert resolver.resolve_local("") is None
    assert resolver.resolve_local(None) is None


def test_minimum_confidence_threshold(index):
    strict = TaxonomyResolver(TaxonomyHolder(index), min_confidence=500)
    assert strict.resolve_local("Cars", "en") is None


def test_resolve_slug(resolver):
    assert resolver.resolve_slug("CARS").slug == "cars"
    assert resolver.resolve_slug("nope") is None


def test_siblings_are_same_parent_leaves(resolver):
    slugs = [c.slug for c in resolver.siblings("cars")]
    assert slugs == ["motorcycles", "trucks"]
    assert "cars" not in slugs
    assert "vehicles" not in slugs


def test_siblings_edge_cases(resolver):
    assert resolver.siblings("jobs") == []
    assert resolver.siblings("plumbing") == []
    assert resolver.siblings("vehicles") == []
    assert resolver.siblings("missing") == []
    assert [c.slug for c in resolver.siblings("apartments")] == ["lands"]


class _CategoryLookup:
    def __init__(self, ids=None, error=None):
        self.ids = ids or []
        self.error = error
        self.terms = []

    async def search_categories_by_name(self, term, limit=10):
        self.terms.append(term)
        if self.error:
            raise self.error
        return self.ids


@pytest.mark.asyncio
async def test_resolve_falls_back_to_storage(index):
    storage = _CategoryLookup(ids=[MOTORCYCLES])
    resolver = TaxonomyResolver(TaxonomyHolder(index), storage)
    result = await resolver.resolve("دراجه")
    assert result.slug == "motorcycles"
    assert storage.terms == ["دراجه"]


@pytest.mark.asyncio
async def test_resolve_prefers_local_match(index):
    storage = _CategoryLookup(ids=[TRUCKS])
    resolver = TaxonomyResolver(TaxonomyHolder(index), storage)
    assert (await resolver.resolve("شقة")).slug == "apartments"
    assert storage.terms == []


@pytest.mark.asyncio
async def test_resolve_storage_failure_is_not_an_error(index):
    storage = _CategoryLookup(error=SearchInfrastructureError("down"))
    resolver = TaxonomyResolver(TaxonomyHolder(index), storage)
    assert await resolver.resolve("دراجه") is None


def test_resolve_location(index):
    assert index.resolve_location("Aleppo").city_ids == (ALEPPO,)
    assert index.resolve_location("حلب").city_ids == (ALEPPO,)
    assert index.resolve_location("الشام").city_ids == (DAMASCUS,)
    assert index.resolve_location("Damascus, Syria").kind == "city"

    province = index.resolve_location("Rural Damascus")
    assert province.kind == "province"
    assert province.city_ids == (JARAMANA,)

    assert index.resolve_location("Atlantis") is None
    assert index.resolve_location("") is None


def test_transaction_type_lookup(index):
    assert index.transaction_type_id("Sale") == 1
    assert index.transaction_type_id("swap") is None
    assert index.transaction_type_id(None) is None


def test_holder_swap_keeps_old_snapshot_intact(index):
    holder = TaxonomyHolder()
    assert len(holder.current.categories) == 0
    before = holder.current
    previous = holder.swap(index)
    assert previous is before
    assert len(before.categories) == 0
    assert holder.current.get("cars").id == CARS


def test_index_built_from_database(seeded_holder):
    index = seeded_holder.current
    assert len(index.categories) == 10
    # sold listings do not count
    assert index.get("cars").listing_count == 3
    assert index.get("motorcycles").listing_count == 4
    assert index.keywords["موتور"] == "motorcycles"
    assert len(index.cities) == 3
    assert index.transaction_type_id("rent") == 2
    assert index.get("apartments").id == APARTMENTS
    assert index.built_at is not None


def test_city_rows_shape():
    index = TaxonomyIndex.from_rows([], [], city_rows(), {})
    assert {c.name_en for c in index.cities} == {"Aleppo", "Damascus", "Jaramana"}


def test_refresh_retries_on_a_fresh_session(seeded_db, monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda seconds: None)
    sessions = []

    def session_factory():
        session = seeded_db()
        sessions.append(session)
        return session

    real_load = crud.load_categories
    calls = []

    def flaky_load(db):
        calls.append(db)
        if len(calls) == 1:
            raise OperationalError("SELECT categories", {}, Exception("server closed the connection"))
        return real_load(db)

    monkeypatch.setattr(crud, "load_categories", flaky_load)
    holder = TaxonomyHolder()
    index = holder.refresh(session_factory)

    assert len(sessions) == 2
    assert calls[0] is sessions[0] and calls[1] is sessions[1]
    assert holder.current is index
    assert index.get("cars").id == CARS
