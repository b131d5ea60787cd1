# marketplace_search/services.py
"""Search orchestration: category → cache → cascade → scoring → validation."""
from typing import List, Optional

from .cache import SearchCache, make_key
from .config import SearchConfig
from .db import SessionLocal
from .errors import SearchInfrastructureError
from .planner import QueryPlanner
from .predicates import AttributePredicateBuilder
from .schemas import (
    CategoryOut, ListingOut, Notice, ResolvedCategory, SearchQuery, SearchResponse, SearchResult,
)
from .scoring import DeterministicMatchScorer, MatchScorer, RequestedCriteria
from .storage import StorageGateway
from .taxonomy import CategoryNode, TaxonomyHolder, TaxonomyIndex, TaxonomyResolver
from .utils import get_logger
from .validator import ResultValidator

logger = get_logger(__name__)


class SearchService:
    def __init__(self, holder: TaxonomyHolder, storage, config: Optional[SearchConfig] = None,
                 cache: Optional[SearchCache] = None, scorer: Optional[MatchScorer] = None,
                 builder: Optional[AttributePredicateBuilder] = None):
        self.holder = holder
        self.storage = storage
        self.config = config or SearchConfig()
        self.cache = cache or SearchCache()
        self.scorer = scorer or DeterministicMatchScorer()
        self.resolver = TaxonomyResolver(holder, storage, self.config.min_category_confidence)
        self.planner = QueryPlanner(storage, self.config, builder)
        self.validator = ResultValidator(self.config)

    async def resolve_category(self, query: SearchQuery) -> Optional[ResolvedCategory]:
        """The category hint first, then the upstream suggestions in order."""
        if query.category_hint:
            category = self.resolver.resolve_slug(query.category_hint, query.language)
            if category is None:
                category = await self.resolver.resolve(query.category_hint, query.language)
            if category is not None:
                return category
        for slug in query.suggested_categories:
            category = self.resolver.resolve_slug(slug, query.language)
            if category is not None:
                logger.info("Using suggested category %s", category.slug)
                return category
        return None

    async def search(self, query: SearchQuery) -> SearchResponse:
        index = self.holder.current
        category = await self.resolve_category(query)

        key = make_key(query, category.slug if category else None)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return SearchResponse.model_validate(cached).model_copy(update={"cached": True})

        outcome = await self.planner.run(query, index, category)
        warnings: List[Notice] = []
        if category is None and query.category_hint:
            warnings.append(Notice(code="category_unresolved", field="category",
                                   detail={"value": query.category_hint}))
        warnings.extend(outcome.notices)
        if outcome.failures:
            warnings.append(Notice(code="strategies_failed",
                                   detail={"count": len(outcome.failures)}))

        if not outcome.found:
            return SearchResponse(
                status="no_results",
                category=category,
                validation=self.validator.validate([], query, category, None, index),
                warnings=warnings,
                attempted_strategies=outcome.attempted,
            )

        ids = [row["id"] for row in outcome.rows]
        try:
            attributes = await self.storage.load_attribute_values(ids)
        except SearchInfrastructureError as e:
            logger.warning("Attribute values unavailable for %d listings: %s", len(ids), e)
            warnings.append(Notice(code="attributes_unavailable"))
            attributes = {}

        criteria = RequestedCriteria(filters=dict(outcome.applied_filters), keywords=tuple(query.keywords))
        results = []
        for row in outcome.rows:
            listing = ListingOut(**row, attributes=attributes.get(row["id"], {}))
            match = self.scorer.score(criteria, listing)
            results.append(SearchResult(
                listing=listing,
                match_score=match.score,
                match_type=match.match_type,
                matched_attrs=match.matched,
                unmatched_attrs=match.unmatched,
                strategy_used=outcome.strategy_used,
            ))

        validation = self.validator.validate(results, query, category, outcome.strategy_used, index)
        dropped = set(validation.dropped)
        kept = [r for r in results if r.listing.id not in dropped]

        response = SearchResponse(
            status="ok" if kept else "no_results",
            strategy_used=outcome.strategy_used if kept else None,
            fallback=outcome.fallback if kept else None,
            category=category,
            results=kept,
            validation=validation,
            warnings=warnings,
            attempted_strategies=outcome.attempted,
        )
        if kept and not outcome.failures:
            await self.cache.set(key, response.model_dump_json())
        return response

    def siblings(self, slug: str) -> Optional[List[CategoryOut]]:
        index = self.holder.current
        if index.get(slug) is None:
            return None
        return [category_out(n) for n in self.resolver.siblings(slug)]


def category_out(node: CategoryNode) -> CategoryOut:
    return CategoryOut(
        id=node.id, slug=node.slug, name_ar=node.name_ar, name_en=node.name_en,
        level=node.level, is_leaf=node.is_leaf, listing_count=node.listing_count,
    )


config = SearchConfig.from_env()
taxonomy_holder = TaxonomyHolder()
_service: Optional[SearchService] = None


def get_search_service() -> SearchService:
    global _service
    if _service is None:
        _service = SearchService(
            taxonomy_holder,
            StorageGateway(SessionLocal, config.storage_timeout),
            config,
            SearchCache.from_config(config),
        )
    return _service


def refresh_taxonomy() -> TaxonomyIndex:
    return taxonomy_holder.refresh(SessionLocal)
