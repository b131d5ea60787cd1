# marketplace_search/taxonomy.py
"""Category taxonomy snapshot and category resolution.

`TaxonomyIndex` is an immutable snapshot of the active category tree (plus
cities, transaction types and the curated keyword table). It is rebuilt off
the request path and published by swapping the reference held in a
`TaxonomyHolder`; readers grab `holder.current` once and work on that
snapshot for the rest of the call.

`TaxonomyResolver` maps a free-text term or slug to the best category,
preferring specific (leaf, deep, busy) categories, and computes sibling
leaves for the fallback cascade.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .errors import SearchInfrastructureError
from .locations import canonical_city, normalize_location
from .schemas import ResolvedCategory
from .utils import get_logger, normalize_text, retry

logger = get_logger(__name__)


@dataclass(frozen=True)
class CategoryNode:
    id: int
    slug: str
    name_ar: Optional[str]
    name_en: Optional[str]
    parent_id: Optional[int]
    level: int
    is_leaf: bool
    listing_count: int = 0
    sort_order: int = 0

    def name(self, language: str = "ar") -> Optional[str]:
        if language == "en":
            return self.name_en or self.name_ar
        return self.name_ar or self.name_en


@dataclass(frozen=True)
class CityNode:
    id: int
    name_ar: Optional[str]
    name_en: Optional[str]
    province_ar: Optional[str] = None
    province_en: Optional[str] = None


@dataclass(frozen=True)
class LocationMatch:
    kind: str  # "city" or "province"
    name: str
    city_ids: Tuple[int, ...]


@dataclass(frozen=True)
class TaxonomyIndex:
    categories: Mapping[int, CategoryNode]
    by_slug: Mapping[str, CategoryNode]
    children: Mapping[Optional[int], Tuple[int, ...]]
    keywords: Mapping[str, str]
    cities: Tuple[CityNode, ...] = ()
    transaction_types: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    built_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "TaxonomyIndex":
        return cls.from_rows([], [], [], {})

    @classmethod
    def from_rows(cls, categories: Iterable[dict], keywords: Iterable[dict],
                  cities: Iterable[dict], transaction_types: Mapping[str, int]) -> "TaxonomyIndex":
        rows = {row["id"]: row for row in categories}
        children: Dict[Optional[int], List[int]] = {}
        for row in rows.values():
            parent = row.get("parent_id") if row.get("parent_id") in rows else None
            children.setdefault(parent, []).append(row["id"])

        def order(cid):
            r = rows[cid]
            return (r.get("sort_order") or 0, r["id"])

        for ids in children.values():
            ids.sort(key=order)

        # listing counts roll up from leaves to every ancestor
        totals: Dict[int, int] = {}

        def total(cid):
            if cid not in totals:
                own = int(rows[cid].get("listing_count") or 0)
                totals[cid] = own + sum(total(c) for c in children.get(cid, ()))
            return totals[cid]

        nodes = {}
        for cid, row in rows.items():
            nodes[cid] = CategoryNode(
                id=cid,
                slug=row["slug"],
                name_ar=row.get("name_ar"),
                name_en=row.get("name_en"),
                parent_id=row.get("parent_id") if row.get("parent_id") in rows else None,
                level=int(row.get("level") or 0),
                is_leaf=not children.get(cid),
                listing_count=total(cid),
                sort_order=int(row.get("sort_order") or 0),
            )

        by_slug = {n.slug: n for n in nodes.values()}
        table: Dict[str, str] = {}
        for kw in keywords:
            node = nodes.get(kw["category_id"])
            term = normalize_text(kw["keyword"])
            if node is None or not node.is_leaf or not term:
                continue
            current = by_slug.get(table.get(term))
            if current is None or node.listing_count > current.listing_count:
                table[term] = node.slug

        return cls(
            categories=MappingProxyType(nodes),
            by_slug=MappingProxyType(by_slug),
            children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
            keywords=MappingProxyType(table),
            cities=tuple(CityNode(**c) for c in cities),
            transaction_types=MappingProxyType(dict(transaction_types)),
            built_at=datetime.now(timezone.utc),
        )

    def get(self, slug: str) -> Optional[CategoryNode]:
        return self.by_slug.get(slug)

    def ancestors(self, category_id: int) -> List[CategoryNode]:
        """Parent first, root last."""
        out = []
        node = self.categories.get(category_id)
        seen = set()
        while node is not None and node.parent_id is not None and node.parent_id not in seen:
            seen.add(node.parent_id)
            node = self.categories.get(node.parent_id)
            if node is not None:
                out.append(node)
        return out

    def ancestor_ids(self, category_id: int) -> frozenset:
        return frozenset(n.id for n in self.ancestors(category_id))

    def descends_from(self, category_id: int, ancestor_id: int) -> bool:
        """True for the category itself or any of its descendants."""
        return category_id == ancestor_id or ancestor_id in self.ancestor_ids(category_id)

    def leaf_ids_under(self, category_id: int) -> List[int]:
        out, stack = [], [category_id]
        while stack:
            cid = stack.pop()
            kids = self.children.get(cid, ())
            if not kids and cid in self.categories:
                out.append(cid)
            stack.extend(kids)
        return sorted(out)

    def sibling_leaves(self, slug: str) -> List[CategoryNode]:
        node = self.by_slug.get(slug)
        if node is None or node.parent_id is None:
            return []
        siblings = [
            self.categories[cid] for cid in self.children.get(node.parent_id, ())
            if cid != node.id and self.categories[cid].is_leaf
        ]
        siblings.sort(key=lambda n: (-n.listing_count, n.sort_order, n.slug))
        return siblings

    def transaction_type_id(self, slug: Optional[str]) -> Optional[int]:
        if not slug:
            return None
        return self.transaction_types.get(slug.strip().lower())

    def resolve_location(self, hint: Optional[str]) -> Optional[LocationMatch]:
        wanted = normalize_location(hint)
        if not wanted:
            return None
        wanted_city = canonical_city(wanted)

        def same(name):
            n = normalize_location(name)
            if not n:
                return False
            return n == wanted or (wanted_city is not None and canonical_city(n) == wanted_city)

        cities = [c for c in self.cities if same(c.name_ar) or same(c.name_en)]
        if cities:
            return LocationMatch("city", hint.strip(), tuple(c.id for c in cities))
        in_province = [c for c in self.cities if same(c.province_ar) or same(c.province_en)]
        if in_province:
            return LocationMatch("province", hint.strip(), tuple(c.id for c in in_province))
        if len(wanted) >= 3:
            partial = [
                c for c in self.cities
                if any(wanted in normalize_location(n) for n in (c.name_ar, c.name_en) if n)
            ]
            if partial:
                return LocationMatch("city", hint.strip(), tuple(c.id for c in partial))
        return None


def build_index(db) -> TaxonomyIndex:
    return TaxonomyIndex.from_rows(
        crud.load_categories(db),
        crud.load_category_keywords(db),
        crud.load_cities(db),
        crud.load_transaction_types(db),
    )


@retry(SQLAlchemyError, tries=3, delay=1, backoff=2)
def load_index(session_factory) -> TaxonomyIndex:
    """Build an index on a fresh session; a failed attempt's session is discarded."""
    db = session_factory()
    try:
        return build_index(db)
    finally:
        db.close()


class TaxonomyHolder:
    """Publishes the current `TaxonomyIndex`; refresh builds a new one and swaps it in."""

    def __init__(self, index: Optional[TaxonomyIndex] = None):
        self._index = index if index is not None else TaxonomyIndex.empty()

    @property
    def current(self) -> TaxonomyIndex:
        return self._index

    def swap(self, index: TaxonomyIndex) -> TaxonomyIndex:
        previous, self._index = self._index, index
        return previous

    def refresh(self, session_factory) -> TaxonomyIndex:
        index = load_index(session_factory)
        self.swap(index)
        logger.info(
            "Taxonomy index refreshed: %d categories, %d keywords, %d cities",
            len(index.categories), len(index.keywords), len(index.cities),
        )
        return index


class TaxonomyResolver:
    BASE_SCORE = 40
    LEAF_BONUS = 35
    LEVEL_WEIGHT = 10
    KEYWORD_BONUS = 25
    COMPOUND_BONUS = 5
    MAX_POPULARITY_BONUS = 10
    MIN_PARTIAL_LENGTH = 3

    EXACT_NAME = 20
    EXACT_SLUG = 18
    NAME_CONTAINS_TERM = 12
    TERM_CONTAINS_NAME = 10
    SLUG_CONTAINS_TERM = 8

    def __init__(self, holder: TaxonomyHolder, storage=None, min_confidence: float = 55.0):
        self._holder = holder
        self._storage = storage
        self.min_confidence = min_confidence

    def confidence(self, node: CategoryNode, match_score: float) -> float:
        return (
            self.BASE_SCORE
            + self.LEAF_BONUS * int(node.is_leaf)
            + node.level * self.LEVEL_WEIGHT
            + match_score
            + min(node.listing_count / 100, self.MAX_POPULARITY_BONUS)
        )

    def match_score(self, phrase: str, node: CategoryNode) -> int:
        names = [normalize_text(n) for n in (node.name_ar, node.name_en) if n]
        slug = node.slug.lower()
        dashed = phrase.replace(" ", "-")
        if phrase in names:
            return self.EXACT_NAME
        if dashed == slug:
            return self.EXACT_SLUG
        if len(phrase) >= self.MIN_PARTIAL_LENGTH and any(phrase in n for n in names):
            return self.NAME_CONTAINS_TERM
        if any(len(n) >= self.MIN_PARTIAL_LENGTH and n in phrase for n in names):
            return self.TERM_CONTAINS_NAME
        if len(phrase) >= self.MIN_PARTIAL_LENGTH and dashed in slug:
            return self.SLUG_CONTAINS_TERM
        return 0

    @staticmethod
    def _phrases(term: str) -> List[Tuple[str, bool]]:
        """The whole term, its words, and adjacent word pairs (flagged as compounds)."""
        words = [w for w in term.split() if len(w) >= 2]
        phrases = [(term, False)]
        if len(words) > 1:
            phrases += [(w, False) for w in words]
            phrases += [(f"{a} {b}", True) for a, b in zip(words, words[1:])]
        seen, out = set(), []
        for phrase, compound in phrases:
            if phrase not in seen:
                seen.add(phrase)
                out.append((phrase, compound))
        return out

    def _best(self, scored: Dict[str, float], index: TaxonomyIndex,
              language: str = "ar") -> Optional[ResolvedCategory]:
        if not scored:
            return None
        ranked = sorted(
            scored.items(),
            key=lambda kv: (-kv[1], -index.by_slug[kv[0]].level,
                            -index.by_slug[kv[0]].listing_count, kv[0]),
        )
        slug, score = ranked[0]
        if score < self.min_confidence:
            return None
        return self._resolved(index.by_slug[slug], score, language)

    def _resolved(self, node: CategoryNode, score: float, language: str = "ar") -> ResolvedCategory:
        return ResolvedCategory(
            id=node.id, slug=node.slug, name=node.name(language),
            confidence=round(score, 2), is_leaf=node.is_leaf, level=node.level,
        )

    def resolve_local(self, term: Optional[str], language: str = "ar",
                      index: Optional[TaxonomyIndex] = None) -> Optional[ResolvedCategory]:
        index = index or self._holder.current
        norm = normalize_text(term)
        if not norm:
            return None

        direct = index.keywords.get(norm)
        if direct is not None and direct in index.by_slug:
            node = index.by_slug[direct]
            return self._resolved(node, self.confidence(node, self.KEYWORD_BONUS), language)

        scored: Dict[str, float] = {}
        for phrase, compound in self._phrases(norm):
            bonus = self.COMPOUND_BONUS if compound else 0
            leaf_slug = index.keywords.get(phrase)
            if leaf_slug is not None and leaf_slug in index.by_slug:
                node = index.by_slug[leaf_slug]
                score = self.confidence(node, self.KEYWORD_BONUS) + bonus
                scored[node.slug] = max(scored.get(node.slug, 0), score)
            for node in index.categories.values():
                kind = self.match_score(phrase, node)
                if kind:
                    score = self.confidence(node, kind) + bonus
                    scored[node.slug] = max(scored.get(node.slug, 0), score)

        return self._best(scored, index, language)

    async def resolve(self, term: Optional[str], language: str = "ar") -> Optional[ResolvedCategory]:
        """Best category for `term`, or None: callers then search without a category."""
        index = self._holder.current
        local = self.resolve_local(term, language, index)
        if local is not None:
            logger.debug("Resolved %r locally to %s (%.1f)", term, local.slug, local.confidence)
            return local
        norm = normalize_text(term)
        if not norm or self._storage is None:
            return None

        try:
            ids = await self._storage.search_categories_by_name(norm)
        except SearchInfrastructureError as e:
            logger.warning("Category lookup for %r failed: %s", term, e)
            return None

        scored: Dict[str, float] = {}
        for cid in ids:
            node = index.categories.get(cid)
            if node is None:
                continue
            kind = self.match_score(norm, node) or self.SLUG_CONTAINS_TERM
            scored[node.slug] = max(scored.get(node.slug, 0), self.confidence(node, kind))
        best = self._best(scored, index, language)
        if best is not None:
            logger.info("Resolved %r via storage to %s (%.1f)", term, best.slug, best.confidence)
        return best

    def resolve_slug(self, slug: str, language: str = "ar") -> Optional[ResolvedCategory]:
        node = self._holder.current.get((slug or "").strip().lower())
        if node is None:
            return None
        return self._resolved(node, self.confidence(node, self.EXACT_SLUG), language)

    def siblings(self, slug: str) -> List[CategoryNode]:
        """Other active leaves under the same parent; never the parent or any ancestor."""
        return self._holder.current.sibling_leaves(slug)
