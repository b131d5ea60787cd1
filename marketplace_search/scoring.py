# marketplace_search/scoring.py
"""Per-result match scoring.

The scorer is pluggable: anything with a `score(requested, candidate)` method
returning a `MatchResult` can replace the default deterministic matcher.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Protocol, Tuple

from .locations import locations_match
from .predicates import as_bool, as_date, as_number
from .schemas import ListingOut, MatchType
from .utils import normalize_text


@dataclass(frozen=True)
class RequestedCriteria:
    filters: Dict[str, Any] = field(default_factory=dict)
    keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchResult:
    score: int
    match_type: MatchType
    matched: List[str]
    unmatched: List[str]


class MatchScorer(Protocol):
    def score(self, requested: RequestedCriteria, candidate: ListingOut) -> MatchResult:
        ...


def _text_matches(wanted, have) -> bool:
    w, h = normalize_text(str(wanted)), normalize_text(str(have))
    if w and h and (w in h or h in w):
        return True
    return locations_match(w, h)


def value_matches(wanted, have) -> bool:
    """Substring/alias comparison of a requested filter value with a stored attribute value."""
    if have is None:
        return False
    if isinstance(wanted, dict):
        if "min" in wanted or "max" in wanted:
            n = as_number(have)
            if n is None:
                return False
            low, high = as_number(wanted.get("min")), as_number(wanted.get("max"))
            return (low is None or n >= low) and (high is None or n <= high)
        if "from" in wanted or "to" in wanted:
            d = as_date(have)
            if d is None:
                return False
            start, end = as_date(wanted.get("from")), as_date(wanted.get("to"))
            return (start is None or d >= start) and (end is None or d <= end)
        return False
    if isinstance(wanted, bool):
        return as_bool(have) is wanted
    if isinstance(wanted, (list, tuple, set)):
        return any(value_matches(w, have) for w in wanted)
    if isinstance(have, (list, tuple, set)):
        return any(value_matches(wanted, h) for h in have)
    if isinstance(wanted, (int, float)):
        n = as_number(have)
        return n is not None and n == float(wanted)
    if isinstance(wanted, date) or isinstance(have, date):
        return as_date(wanted) is not None and as_date(wanted) == as_date(have)
    return _text_matches(wanted, have)


class DeterministicMatchScorer:
    """Scores the share of requested criteria a listing satisfies."""

    def score(self, requested: RequestedCriteria, candidate: ListingOut) -> MatchResult:
        matched, unmatched = [], []
        for slug in sorted(requested.filters):
            if value_matches(requested.filters[slug], candidate.attributes.get(slug)):
                matched.append(slug)
            else:
                unmatched.append(slug)
        if requested.keywords:
            # same fields the keyword filter searches
            text = " ".join(normalize_text(t) for t in (candidate.title, candidate.description) if t)
            hit = any(normalize_text(k) and normalize_text(k) in text for k in requested.keywords)
            (matched if hit else unmatched).append("keywords")

        total = len(matched) + len(unmatched)
        if total == 0:
            return MatchResult(100, MatchType.EXACT, matched, unmatched)
        score = round(100 * len(matched) / total)
        if not unmatched:
            match_type = MatchType.EXACT
        elif not matched:
            match_type = MatchType.NO_MATCH
        else:
            match_type = MatchType.PARTIAL
        return MatchResult(score, match_type, matched, unmatched)
