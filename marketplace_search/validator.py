# marketplace_search/validator.py
"""Post-search checks on the listings a cascade returned.

The validator never raises for data problems. Everything it finds is reported
as structured `Notice`s and suggestion codes on the `ValidationReport`.
"""
from statistics import mean
from typing import List, Optional

from .config import SearchConfig
from .locations import any_location_matches
from .predicates import as_number
from .schemas import (
    LocationCompliance, Notice, PriceCompliance, ResolvedCategory, SAME_CATEGORY_STRATEGIES,
    SearchQuery, SearchResult, Strategy, ValidationReport,
)
from .taxonomy import TaxonomyIndex
from .utils import get_logger

logger = get_logger(__name__)

LOCATION_WARNING_BELOW = 50.0
LOCATION_ALL_MATCH_FROM = 80.0
CATEGORY_WARNING_BELOW = 80.0

NO_RESULT_SUGGESTIONS = ("different_keywords", "other_cities", "adjust_price_range", "fewer_filters")
LOCATION_SUGGESTIONS = ("nearby_cities", "broaden_to_province", "modify_criteria")
LOW_QUALITY_SUGGESTIONS = ("be_more_specific", "clearer_keywords", "check_filters")


class ResultValidator:
    def __init__(self, config: Optional[SearchConfig] = None):
        self.config = config or SearchConfig()

    def bucket_for(self, score: int) -> str:
        if score >= self.config.good_score:
            return "excellent"
        if score >= self.config.min_acceptable_score:
            return "good"
        if score >= self.config.partial_score:
            return "partial"
        return "poor"

    def validate(self, results: List[SearchResult], query: SearchQuery,
                 category: Optional[ResolvedCategory] = None,
                 strategy: Optional[Strategy] = None,
                 index: Optional[TaxonomyIndex] = None) -> ValidationReport:
        report = ValidationReport()
        kept = list(results)

        if category is not None and kept:
            compliant = [r for r in kept if _in_category(r, category, index)]
            if strategy in SAME_CATEGORY_STRATEGIES:
                if len(compliant) < len(kept):
                    compliant_ids = {r.listing.id for r in compliant}
                    report.dropped = [r.listing.id for r in kept if r.listing.id not in compliant_ids]
                    logger.warning(
                        "Dropped %d results outside category %s for strategy %s",
                        len(report.dropped), category.slug, strategy.value,
                    )
                    report.warnings.append(Notice(
                        code="category_mismatch_dropped", field="category",
                        detail={"category": category.slug, "dropped": len(report.dropped)},
                    ))
                kept = compliant
            elif strategy is None:
                pct = _percentage(len(compliant), len(kept))
                if pct < CATEGORY_WARNING_BELOW:
                    report.warnings.append(Notice(
                        code="category_mismatch", field="category",
                        detail={"category": category.slug, "match_percentage": pct},
                    ))

        if not kept:
            report.no_results = True
            report.suggestions = self._no_result_suggestions(query)
            return report

        self._check_location(kept, query, report)
        self._check_price(kept, query, report)

        for r in kept:
            report.buckets[self.bucket_for(r.match_score)].append(r)
        report.overall_quality = round(mean(r.match_score for r in kept), 1)
        report.has_confident_matches = bool(report.buckets["excellent"] or report.buckets["good"])
        if not report.has_confident_matches:
            report.warnings.append(Notice(
                code="no_confident_matches",
                detail={"partial": len(report.buckets["partial"]), "poor": len(report.buckets["poor"])},
            ))
        if report.overall_quality < self.config.min_acceptable_score:
            _extend_unique(report.suggestions, LOW_QUALITY_SUGGESTIONS)
        return report

    def _check_location(self, kept: List[SearchResult], query: SearchQuery, report: ValidationReport):
        if not query.location_hint:
            return
        hits = sum(
            1 for r in kept
            if any_location_matches((r.listing.city, r.listing.province), query.location_hint)
        )
        pct = _percentage(hits, len(kept))
        report.location = LocationCompliance(
            match_percentage=pct, all_match=pct >= LOCATION_ALL_MATCH_FROM,
        )
        if pct < LOCATION_WARNING_BELOW:
            report.warnings.append(Notice(
                code="location_mismatch", field="location",
                detail={"location": query.location_hint, "match_percentage": pct},
            ))
            _extend_unique(report.suggestions, LOCATION_SUGGESTIONS)

    def _check_price(self, kept: List[SearchResult], query: SearchQuery, report: ValidationReport):
        slug = self.config.price_attribute
        wanted = query.attribute_filters.get(slug)
        if not isinstance(wanted, dict) or not ("min" in wanted or "max" in wanted):
            return
        low, high = as_number(wanted.get("min")), as_number(wanted.get("max"))
        within = out = 0
        for r in kept:
            price = as_number(r.listing.attributes.get(slug))
            if price is None:
                continue
            if (low is None or price >= low) and (high is None or price <= high):
                within += 1
            else:
                out += 1
        report.price = PriceCompliance(within_range=within, out_of_range=out)
        if out > within:
            report.warnings.append(Notice(
                code="price_out_of_range", field=slug,
                detail={"within_range": within, "out_of_range": out},
            ))

    def _no_result_suggestions(self, query: SearchQuery) -> List[str]:
        wanted = {
            "different_keywords": bool(query.keywords or query.expanded_keywords or query.category_hint),
            "other_cities": bool(query.location_hint),
            "adjust_price_range": self.config.price_attribute in query.attribute_filters,
            "fewer_filters": bool(query.attribute_filters),
        }
        codes = [code for code in NO_RESULT_SUGGESTIONS if wanted[code]]
        return codes or ["different_keywords"]


def _in_category(result: SearchResult, category: ResolvedCategory,
                 index: Optional[TaxonomyIndex]) -> bool:
    cid = result.listing.category_id
    if cid == category.id:
        return True
    if index is not None and not category.is_leaf:
        return index.descends_from(cid, category.id)
    return False


def _percentage(part: int, whole: int) -> float:
    return round(100.0 * part / whole, 1) if whole else 0.0


def _extend_unique(target: List[str], codes):
    for code in codes:
        if code not in target:
            target.append(code)
