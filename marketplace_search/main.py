# marketplace_search/main.py
from fastapi import FastAPI
from marketplace_search.api.routes import router as api_router
from marketplace_search.db import SessionLocal
from marketplace_search.scheduler import start_taxonomy_refresh, stop_scheduler
from marketplace_search.services import config, taxonomy_holder
from marketplace_search.utils import logger

# create FastAPI instance
app = FastAPI(title="marketplace-search")
app.include_router(api_router)


@app.on_event("startup")
def on_startup_build_taxonomy():
    # serve with an empty index rather than crash if the catalog is unreachable
    try:
        taxonomy_holder.refresh(SessionLocal)
    except Exception as e:
        logger.exception("Initial taxonomy build failed: %s", e)
    start_taxonomy_refresh(taxonomy_holder, SessionLocal, config.taxonomy_refresh_minutes)


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()
