# marketplace_search/predicates.py
"""Typed attribute predicates over the EAV value store.

`AttributePredicateBuilder.build` turns one attribute filter into a typed
`Predicate`; `Predicate.to_clause` renders it as a correlated EXISTS over
`listing_attribute_values`, with every literal as a bound parameter.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Boolean, Text, and_, bindparam, exists, func, or_
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import aliased
from sqlalchemy.sql.expression import ColumnElement

from .models import AttributeValue, Listing
from .schemas import Notice
from .utils import escape_like, get_logger, normalize_text

logger = get_logger(__name__)

@dataclass(frozen=True)
class AttributeSpec:
    id: int
    slug: str
    type: str
    options: Tuple[Any, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    unit: Optional[str] = None
    required: bool = False


class json_array_overlaps(ColumnElement):
    """True when a JSON array column shares at least one string with `values`."""
    type = Boolean()
    inherit_cache = False

    def __init__(self, column, values):
        self.column = column
        self.values = [str(v) for v in values]


@compiles(json_array_overlaps, "postgresql")
def _overlaps_postgresql(element, compiler, **kw):
    values = bindparam("options", element.values, unique=True, type_=ARRAY(Text))
    return "(%s ?| %s)" % (compiler.process(element.column, **kw), compiler.process(values, **kw))


@compiles(json_array_overlaps)
def _overlaps_default(element, compiler, **kw):
    column = compiler.process(element.column, **kw)
    params = ", ".join(
        compiler.process(bindparam("option", v, unique=True, type_=Text()), **kw)
        for v in element.values
    )
    return "EXISTS (SELECT 1 FROM json_each(%s) WHERE json_each.value IN (%s))" % (column, params)


@dataclass(frozen=True)
class Predicate:
    attribute_id: int
    slug: str

    def condition(self, lav):
        raise NotImplementedError

    def to_clause(self):
        lav = aliased(AttributeValue)
        return exists().where(and_(
            lav.listing_id == Listing.id,
            lav.attribute_id == self.attribute_id,
            self.condition(lav),
        ))


@dataclass(frozen=True)
class NumberRange(Predicate):
    low: Optional[float] = None
    high: Optional[float] = None

    def condition(self, lav):
        if self.low is not None and self.low == self.high:
            return lav.value_number == self.low
        conds = []
        if self.low is not None:
            conds.append(lav.value_number >= self.low)
        if self.high is not None:
            conds.append(lav.value_number <= self.high)
        return and_(*conds)


@dataclass(frozen=True)
class BooleanEquals(Predicate):
    value: bool = True

    def condition(self, lav):
        return lav.value_boolean == self.value


@dataclass(frozen=True)
class OptionMatch(Predicate):
    """Stored option set intersects `values`; `scalar_text` also accepts plain-text storage."""
    values: Tuple[str, ...] = ()
    scalar_text: bool = False

    def condition(self, lav):
        overlap = json_array_overlaps(lav.value_json, self.values)
        if not self.scalar_text:
            return overlap
        lowered = [v.lower() for v in self.values]
        return or_(overlap, func.lower(lav.value_text).in_(lowered))


@dataclass(frozen=True)
class TextContains(Predicate):
    needle: str = ""

    def condition(self, lav):
        return lav.value_text.ilike(f"%{escape_like(self.needle)}%", escape="\\")


@dataclass(frozen=True)
class DateRange(Predicate):
    start: Optional[date] = None
    end: Optional[date] = None

    def condition(self, lav):
        conds = []
        if self.start is not None:
            conds.append(lav.value_date >= self.start)
        if self.end is not None:
            conds.append(lav.value_date <= self.end)
        return and_(*conds)


def as_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def as_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "yes", "1", "نعم"):
            return True
        if v in ("false", "no", "0", "لا"):
            return False
    return None


def as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def as_option(value) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class AttributePredicateBuilder:
    """Compiles one typed attribute filter into a `Predicate`, or None when it can't."""

    def build(self, spec: AttributeSpec, value) -> Optional[Predicate]:
        handler = getattr(self, f"_build_{(spec.type or '').lower()}", None)
        if handler is None:
            return None
        return handler(spec, value)

    def _build_number(self, spec, value):
        if isinstance(value, dict):
            low = value.get("min")
            high = value.get("max")
            if low is None and high is None:
                return None
            low_n, high_n = as_number(low), as_number(high)
            if (low is not None and low_n is None) or (high is not None and high_n is None):
                return None
            if low_n is not None and high_n is not None and low_n > high_n:
                return None
            return NumberRange(spec.id, spec.slug, low=low_n, high=high_n)
        n = as_number(value)
        if n is None:
            return None
        return NumberRange(spec.id, spec.slug, low=n, high=n)

    _build_range = _build_number

    def _build_boolean(self, spec, value):
        b = as_bool(value)
        if b is None:
            return None
        return BooleanEquals(spec.id, spec.slug, value=b)

    def _build_select(self, spec, value):
        option = as_option(value)
        if option is None:
            return None
        return OptionMatch(spec.id, spec.slug, values=(self._canonical(spec, option),), scalar_text=True)

    def _build_multiselect(self, spec, value):
        raw = value if isinstance(value, (list, tuple, set)) else [value]
        options = []
        for item in raw:
            option = as_option(item)
            if option is None:
                return None
            options.append(self._canonical(spec, option))
        if not options:
            return None
        return OptionMatch(spec.id, spec.slug, values=tuple(dict.fromkeys(options)))

    def _build_text(self, spec, value):
        if not isinstance(value, str) or not value.strip():
            return None
        return TextContains(spec.id, spec.slug, needle=value.strip())

    def _build_date(self, spec, value):
        if isinstance(value, dict):
            start_raw, end_raw = value.get("from"), value.get("to")
            if start_raw is None and end_raw is None:
                return None
            start, end = as_date(start_raw), as_date(end_raw)
            if (start_raw is not None and start is None) or (end_raw is not None and end is None):
                return None
            if start and end and start > end:
                return None
            return DateRange(spec.id, spec.slug, start=start, end=end)
        d = as_date(value)
        if d is None:
            return None
        return DateRange(spec.id, spec.slug, start=d, end=d)

    @staticmethod
    def _canonical(spec: AttributeSpec, option: str) -> str:
        # prefer the stored spelling of a known option
        wanted = normalize_text(option)
        for known in spec.options:
            if normalize_text(str(known)) == wanted:
                return str(known)
        return option


def compile_filters(
    specs: Sequence[AttributeSpec],
    filters: Dict[str, Any],
    builder: Optional[AttributePredicateBuilder] = None,
) -> Tuple[List[Predicate], List[Notice]]:
    """Build predicates for every filter the category knows; collect a notice for the rest."""
    builder = builder or AttributePredicateBuilder()
    by_slug = {s.slug: s for s in specs}
    predicates: List[Predicate] = []
    notices: List[Notice] = []
    for key in sorted(filters or {}):
        value = filters[key]
        if value is None:
            continue
        spec = by_slug.get(key)
        if spec is None:
            logger.info("Dropping filter %r: not an attribute of this category", key)
            notices.append(Notice(code="unknown_attribute", field=key))
            continue
        predicate = builder.build(spec, value)
        if predicate is None:
            logger.info("Dropping filter %r: unusable value for type %s", key, spec.type)
            notices.append(Notice(code="invalid_filter_value", field=key, detail={"type": spec.type}))
            continue
        predicates.append(predicate)
    return predicates, notices
