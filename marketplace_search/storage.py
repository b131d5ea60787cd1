# marketplace_search/storage.py
"""Async access to the read-only catalog.

Each call opens its own session, runs the matching `crud` helper in a worker
thread and is bounded by the storage timeout. Timeouts and database errors
surface as `SearchInfrastructureError` so callers handle one failure type.
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .errors import SearchInfrastructureError, StorageTimeoutError
from .predicates import AttributeSpec
from .utils import get_logger

logger = get_logger(__name__)


class StorageGateway:
    def __init__(self, session_factory, timeout: float = 5.0):
        self._session_factory = session_factory
        self.timeout = timeout

    def _run(self, fn, *args):
        db = self._session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    async def _call(self, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._run, fn, *args), self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(f"{fn.__name__} timed out after {self.timeout}s") from e
        except SQLAlchemyError as e:
            raise SearchInfrastructureError(f"{fn.__name__} failed: {e}") from e

    async def search_listings(self, plan: crud.ListingSearchPlan) -> List[Dict[str, Any]]:
        return await self._call(crud.search_listings, plan)

    async def load_attribute_values(self, listing_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
        return await self._call(crud.load_attribute_values, list(listing_ids))

    async def attribute_definitions_for(self, category_ids: Optional[Sequence[int]]) -> List[AttributeSpec]:
        ids = list(category_ids) if category_ids is not None else None
        return await self._call(crud.attribute_definitions_for, ids)

    async def category_subtree_ids(self, category_id: int) -> List[int]:
        return await self._call(crud.category_subtree_ids, category_id)

    async def search_categories_by_name(self, term: str, limit: int = 10) -> List[int]:
        return await self._call(crud.search_categories_by_name, term, limit)
