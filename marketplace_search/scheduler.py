# marketplace_search/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from .taxonomy import TaxonomyHolder
from .utils import logger

scheduler = BackgroundScheduler()


def refresh_job(holder: TaxonomyHolder, session_factory):
    # a failed rebuild keeps serving the previous index
    try:
        holder.refresh(session_factory)
    except Exception as e:
        logger.exception("Taxonomy refresh failed, keeping previous index: %s", e)


def start_taxonomy_refresh(holder: TaxonomyHolder, session_factory, minutes: int = 30):
    scheduler.add_job(
        refresh_job, 'interval', minutes=minutes, args=[holder, session_factory],
        id="taxonomy_refresh", replace_existing=True, max_instances=1, coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Scheduler started: taxonomy refresh every %d minutes", minutes)
    return scheduler


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
