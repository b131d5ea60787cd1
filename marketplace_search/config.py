# marketplace_search/config.py
"""Runtime configuration for the search core, read from the environment."""
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SearchConfig:
    min_acceptable_score: int = 70
    good_score: int = 85
    partial_score: int = 50
    min_category_confidence: float = 55.0
    result_cap: int = 20
    sibling_limit: int = 3
    storage_timeout: float = 5.0
    cache_timeout: float = 0.5
    cache_ttl: int = 300
    parallel_strategies: bool = False
    taxonomy_refresh_minutes: int = 30
    price_attribute: str = "price"
    redis_url: Optional[str] = None
    cache_namespace: str = "search"

    @classmethod
    def from_env(cls) -> "SearchConfig":
        return cls(
            min_acceptable_score=int(os.getenv("SEARCH_MIN_ACCEPTABLE_SCORE", 70)),
            good_score=int(os.getenv("SEARCH_GOOD_SCORE", 85)),
            partial_score=int(os.getenv("SEARCH_PARTIAL_SCORE", 50)),
            min_category_confidence=float(os.getenv("SEARCH_MIN_CATEGORY_CONFIDENCE", 55)),
            result_cap=int(os.getenv("SEARCH_RESULT_CAP", 20)),
            sibling_limit=int(os.getenv("SEARCH_SIBLING_LIMIT", 3)),
            storage_timeout=float(os.getenv("SEARCH_STORAGE_TIMEOUT", 5.0)),
            cache_timeout=float(os.getenv("SEARCH_CACHE_TIMEOUT", 0.5)),
            cache_ttl=int(os.getenv("SEARCH_CACHE_TTL", 300)),
            parallel_strategies=_flag("SEARCH_PARALLEL_STRATEGIES"),
            taxonomy_refresh_minutes=int(os.getenv("TAXONOMY_REFRESH_MINUTES", 30)),
            price_attribute=os.getenv("SEARCH_PRICE_ATTRIBUTE", "price"),
            redis_url=os.getenv("REDIS_URL") or None,
            cache_namespace=os.getenv("CACHE_NAMESPACE", "search"),
        )
