# marketplace_search/api/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
from .. import schemas
from ..errors import SearchInfrastructureError
from ..services import SearchService, get_search_service, refresh_taxonomy
from ..utils import logger

router = APIRouter()

@router.get("/health")
def health(service: SearchService = Depends(get_search_service)):
    index = service.holder.current
    return {
        "status": "ok",
        "categories": len(index.categories),
        "taxonomy_built_at": index.built_at.isoformat() if index.built_at else None,
        "cache": service.cache.enabled,
    }

@router.post("/search", response_model=schemas.SearchResponse)
async def search(query: schemas.SearchQuery, service: SearchService = Depends(get_search_service)):
    try:
        return await service.search(query)
    except SearchInfrastructureError as e:
        logger.error("Search unavailable: %s (%s)", e, "; ".join(e.failures))
        raise HTTPException(status_code=503, detail={"code": "search_unavailable", "retryable": e.retryable})


@router.get("/categories/resolve", response_model=Optional[schemas.ResolvedCategory])
async def resolve_category(
    term: str = Query(..., min_length=1),
    language: str = Query("ar", pattern="^(ar|en)$"),
    service: SearchService = Depends(get_search_service),
):
    return await service.resolver.resolve(term, language)


@router.get("/categories/{slug}/siblings", response_model=List[schemas.CategoryOut])
def category_siblings(slug: str, service: SearchService = Depends(get_search_service)):
    siblings = service.siblings(slug)
    if siblings is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return siblings


@router.post("/taxonomy/refresh")
def trigger_refresh():
    try:
        index = refresh_taxonomy()
        return {"status": "ok", "categories": len(index.categories)}
    except Exception as e:
        logger.exception("Taxonomy refresh failed: %s", e)
        raise HTTPException(status_code=500, detail="Taxonomy refresh failed")
