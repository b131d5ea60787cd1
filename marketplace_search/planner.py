# marketplace_search/planner.py
"""Fallback cascade for listing search.

Strategies run from most to least specific and the first non-empty result
wins:

    1. exact_match                       query as given
    2. drop_keywords                     without the free-text keywords
    3. expand_location                   ... and without the city/province
    4. sibling_category                  each sibling leaf, original location
    5. sibling_category_expand_location  each sibling leaf, any location

Broadening happens only by relaxing keywords/location or by moving to a
sibling leaf. A step whose category filter would contain an ancestor of the
requested category is never executed.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import SearchConfig
from .crud import ListingSearchPlan
from .errors import SearchInfrastructureError
from .predicates import AttributePredicateBuilder, Predicate, compile_filters
from .schemas import FallbackNotice, Notice, ResolvedCategory, SearchQuery, Strategy
from .taxonomy import CategoryNode, TaxonomyIndex
from .utils import get_logger

logger = get_logger(__name__)

FALLBACK_CODES = {
    Strategy.DROP_KEYWORDS: "keyword_filter_relaxed",
    Strategy.EXPAND_LOCATION: "other_locations",
    Strategy.SIBLING_CATEGORY: "similar_category",
    Strategy.SIBLING_CATEGORY_EXPAND_LOCATION: "similar_category_all_locations",
}


@dataclass(frozen=True)
class CascadeStep:
    strategy: Strategy
    category: Optional[CategoryNode]
    keep_keywords: bool
    keep_location: bool


@dataclass
class CascadeOutcome:
    strategy_used: Optional[Strategy] = None
    category_used: Optional[CategoryNode] = None
    rows: List[Dict[str, Any]] = field(default_factory=list)
    applied_filters: Dict[str, Any] = field(default_factory=dict)
    fallback: Optional[FallbackNotice] = None
    attempted: List[Strategy] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    notices: List[Notice] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.rows)


@dataclass
class _StepResult:
    rows: List[Dict[str, Any]]
    predicates: List[Predicate]
    notices: List[Notice]


class QueryPlanner:
    def __init__(self, storage, config: Optional[SearchConfig] = None,
                 builder: Optional[AttributePredicateBuilder] = None):
        self.storage = storage
        self.config = config or SearchConfig()
        self.builder = builder or AttributePredicateBuilder()

    def plan_steps(self, query: SearchQuery, index: TaxonomyIndex,
                   category: Optional[CategoryNode], has_location: bool) -> List[CascadeStep]:
        has_keywords = bool(_keywords(query))
        steps = [CascadeStep(Strategy.EXACT_MATCH, category, True, True)]
        if has_keywords:
            steps.append(CascadeStep(Strategy.DROP_KEYWORDS, category, False, True))
        if has_location:
            steps.append(CascadeStep(Strategy.EXPAND_LOCATION, category, False, False))
        if category is None:
            return steps

        siblings = index.sibling_leaves(category.slug)[: self.config.sibling_limit]
        for sibling in siblings:
            steps.append(CascadeStep(Strategy.SIBLING_CATEGORY, sibling, False, True))
        if has_location:
            for sibling in siblings:
                steps.append(CascadeStep(Strategy.SIBLING_CATEGORY_EXPAND_LOCATION, sibling, False, False))
        return steps

    async def run(self, query: SearchQuery, index: TaxonomyIndex,
                  category: Optional[ResolvedCategory] = None) -> CascadeOutcome:
        outcome = CascadeOutcome()

        requested = index.categories.get(category.id) if category is not None else None
        forbidden = index.ancestor_ids(requested.id) if requested is not None else frozenset()

        location = None
        if query.location_hint:
            location = index.resolve_location(query.location_hint)
            if location is None:
                outcome.notices.append(Notice(code="unknown_location", field="location",
                                              detail={"value": query.location_hint}))
        tt_id = index.transaction_type_id(query.transaction_type)
        if query.transaction_type and tt_id is None:
            outcome.notices.append(Notice(code="unknown_transaction_type", field="transaction_type",
                                          detail={"value": query.transaction_type}))

        limit = query.page_size or self.config.result_cap
        offset = (query.page - 1) * limit
        keywords = _keywords(query)
        category_ids_cache: Dict[int, List[int]] = {}
        compiled_cache: Dict[Optional[int], tuple] = {}

        async def category_ids(node: CategoryNode) -> List[int]:
            if node.id not in category_ids_cache:
                if node.is_leaf:
                    category_ids_cache[node.id] = [node.id]
                else:
                    try:
                        category_ids_cache[node.id] = await self.storage.category_subtree_ids(node.id)
                    except SearchInfrastructureError as e:
                        logger.warning("Subtree lookup for %s failed, using index leaves: %s", node.slug, e)
                        category_ids_cache[node.id] = [node.id] + index.leaf_ids_under(node.id)
            return category_ids_cache[node.id]

        async def compiled(node: Optional[CategoryNode], ids: Optional[List[int]]):
            key = node.id if node is not None else None
            if key not in compiled_cache:
                specs = await self.storage.attribute_definitions_for(ids)
                compiled_cache[key] = compile_filters(specs, query.attribute_filters, self.builder)
            return compiled_cache[key]

        async def execute(step: CascadeStep) -> _StepResult:
            ids = await category_ids(step.category) if step.category is not None else None
            predicates, notices = await compiled(step.category, ids)
            plan = ListingSearchPlan(
                category_ids=ids,
                city_ids=location.city_ids if (location and step.keep_location) else None,
                transaction_type_id=tt_id,
                keywords=tuple(keywords) if step.keep_keywords else (),
                predicates=tuple(predicates),
                limit=limit,
                offset=offset,
                language=query.language,
            )
            rows = await self.storage.search_listings(plan)
            logger.info(
                "Strategy %s (category=%s) returned %d rows",
                step.strategy.value, step.category.slug if step.category else None, len(rows),
            )
            return _StepResult(rows, predicates, notices)

        steps = []
        for step in self.plan_steps(query, index, requested, location is not None):
            if step.category is not None and (step.category.id in forbidden):
                logger.error("Refusing %s: %s is an ancestor of %s",
                             step.strategy.value, step.category.slug, requested.slug)
                continue
            steps.append(step)

        if self.config.parallel_strategies and len(steps) > 1:
            results = await asyncio.gather(*(self._guarded(execute, s) for s in steps),
                                           return_exceptions=True)
        else:
            results = []
            for step in steps:
                result = await self._guarded(execute, step)
                results.append(result)
                if isinstance(result, _StepResult) and result.rows:
                    break

        filter_notices: List[Notice] = []
        for step, result in zip(steps, results):
            outcome.attempted.append(step.strategy)
            if isinstance(result, SearchInfrastructureError):
                logger.warning("Strategy %s failed, continuing cascade: %s", step.strategy.value, result)
                outcome.failures.append(f"{step.strategy.value}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            if not filter_notices:
                filter_notices = list(result.notices)
            if result.rows:
                outcome.strategy_used = step.strategy
                outcome.category_used = step.category
                outcome.rows = result.rows
                outcome.applied_filters = {
                    p.slug: query.attribute_filters[p.slug] for p in result.predicates
                }
                if step.strategy in FALLBACK_CODES:
                    outcome.fallback = FallbackNotice(
                        code=FALLBACK_CODES[step.strategy],
                        category_slug=step.category.slug if step.category is not None else None,
                    )
                if step.category is not requested:
                    filter_notices = list(result.notices)
                break
        outcome.notices.extend(filter_notices)

        if not outcome.found and outcome.attempted and len(outcome.failures) == len(outcome.attempted):
            raise SearchInfrastructureError(
                "storage unavailable for every search strategy", failures=outcome.failures
            )
        if not outcome.found:
            logger.info("Cascade exhausted after %d strategies with no results", len(outcome.attempted))
        return outcome

    @staticmethod
    async def _guarded(execute, step: CascadeStep):
        try:
            return await execute(step)
        except SearchInfrastructureError as e:
            return e


def _keywords(query: SearchQuery) -> List[str]:
    seen, out = set(), []
    for kw in list(query.keywords) + list(query.expanded_keywords):
        kw = (kw or "").strip()
        if kw and kw.lower() not in seen:
            seen.add(kw.lower())
            out.append(kw)
    return out
