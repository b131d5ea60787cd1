# marketplace_search/schemas.py
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class Strategy(str, Enum):
    EXACT_MATCH = "exact_match"
    DROP_KEYWORDS = "drop_keywords"
    EXPAND_LOCATION = "expand_location"
    SIBLING_CATEGORY = "sibling_category"
    SIBLING_CATEGORY_EXPAND_LOCATION = "sibling_category_expand_location"

# strategies that keep the requested category
SAME_CATEGORY_STRATEGIES = frozenset(
    {Strategy.EXACT_MATCH, Strategy.DROP_KEYWORDS, Strategy.EXPAND_LOCATION}
)


class MatchType(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    NO_MATCH = "no_match"


class SearchQuery(BaseModel):
    """Structured query produced upstream; never mutated by the search core."""
    model_config = ConfigDict(frozen=True)

    category_hint: Optional[str] = None
    location_hint: Optional[str] = None
    transaction_type: Optional[str] = None
    attribute_filters: Dict[str, Any] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)
    expanded_keywords: List[str] = Field(default_factory=list)
    suggested_categories: List[str] = Field(default_factory=list)
    language: str = Field("ar", pattern="^(ar|en)$")
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=100)


class ResolvedCategory(BaseModel):
    id: int
    slug: str
    name: Optional[str] = None
    confidence: float
    is_leaf: bool
    level: int


class CategoryOut(BaseModel):
    id: int
    slug: str
    name_ar: Optional[str] = None
    name_en: Optional[str] = None
    level: int
    is_leaf: bool
    listing_count: int = 0


class ListingOut(BaseModel):
    id: int
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: int
    category_slug: Optional[str] = None
    city_id: Optional[int] = None
    city: Optional[str] = None
    province: Optional[str] = None
    transaction_type: Optional[str] = None
    is_boosted: bool = False
    created_at: Optional[datetime] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    class Config:
        from_attributes = True


class SearchResult(BaseModel):
    listing: ListingOut
    match_score: int = Field(100, ge=0, le=100)
    match_type: MatchType = MatchType.EXACT
    matched_attrs: List[str] = Field(default_factory=list)
    unmatched_attrs: List[str] = Field(default_factory=list)
    strategy_used: Strategy = Strategy.EXACT_MATCH


class Notice(BaseModel):
    """Structured, non-fatal observation; presentation turns it into text."""
    code: str
    field: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class FallbackNotice(BaseModel):
    code: str
    category_slug: Optional[str] = None


class LocationCompliance(BaseModel):
    match_percentage: float
    all_match: bool


class PriceCompliance(BaseModel):
    within_range: int
    out_of_range: int


class ValidationReport(BaseModel):
    buckets: Dict[str, List[SearchResult]] = Field(
        default_factory=lambda: {"excellent": [], "good": [], "partial": [], "poor": []}
    )
    overall_quality: float = 0.0
    warnings: List[Notice] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    has_confident_matches: bool = False
    no_results: bool = False
    dropped: List[int] = Field(default_factory=list)
    location: Optional[LocationCompliance] = None
    price: Optional[PriceCompliance] = None


class SearchResponse(BaseModel):
    status: str = "ok"
    strategy_used: Optional[Strategy] = None
    fallback: Optional[FallbackNotice] = None
    category: Optional[ResolvedCategory] = None
    results: List[SearchResult] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)
    warnings: List[Notice] = Field(default_factory=list)
    attempted_strategies: List[Strategy] = Field(default_factory=list)
    cached: bool = False
