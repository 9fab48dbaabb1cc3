from datetime import timedelta
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from organ_etl.batch import default_input_paths, run_files
from organ_etl.config import Settings
from organ_etl.db_models import utc_now
from organ_etl.pipeline import PipelineRunner
from organ_etl.run_store import fail_stale_runs


logger = logging.getLogger(__name__)


def _run_daily_load(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    # Seal runs a crashed process left Running.
    with session_factory() as db:
        fail_stale_runs(db, older_than=utc_now() - timedelta(minutes=settings.stale_run_minutes))

    runner = PipelineRunner(settings, session_factory)
    paths = {entity_type: path for entity_type, path in default_input_paths(settings).items() if path.exists()}
    if not paths:
        logger.warning("scheduled load found no input files", extra={"input_dir": settings.input_dir})
        return

    results = run_files(runner, paths)
    for entity_type, result in results.items():
        context = {
            "entity_type": entity_type.value,
            "run_id": result.run_id,
            "status": result.status,
            "error_rows": result.error_row_count,
        }
        if result.succeeded:
            logger.info("scheduled load completed", extra=context)
        else:
            logger.error("scheduled load failed", extra=context)


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_daily_load,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_load",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_daily_load(settings, session_factory)

    scheduler.start()
