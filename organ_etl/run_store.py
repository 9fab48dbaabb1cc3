from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from organ_etl.db_models import RUN_STATUSES, LoadRun, LoadRunStep, utc_now
from organ_etl.errors import RunStateError
from organ_etl.schemas import RunMetrics


logger = logging.getLogger(__name__)

RUNNING = "Running"
TERMINAL_STATUSES = tuple(status for status in RUN_STATUSES if status != RUNNING)


def get_run(db: Session, run_id: int) -> LoadRun:
    run = db.get(LoadRun, run_id)
    if run is None:
        raise RunStateError(f"load run {run_id} does not exist")
    return run


def start_run(
    db: Session,
    *,
    package_name: str,
    source_file_name: str | None = None,
    entity_type: str | None = None,
    executed_by: str | None = None,
    host_name: str | None = None,
    started_at: datetime | None = None,
) -> LoadRun:
    # The autoincrement key is the run id, so concurrent callers never share one.
    run = LoadRun(
        package_name=package_name,
        source_file_name=source_file_name,
        entity_type=entity_type,
        executed_by=executed_by,
        host_name=host_name,
        started_at=started_at or utc_now(),
        status=RUNNING,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info("load run started", extra={"run_id": run.id, "package_name": package_name})
    return run


def complete_run(
    db: Session,
    run_id: int,
    *,
    status: str,
    metrics: RunMetrics,
    error_message: str | None = None,
    completed_at: datetime | None = None,
) -> LoadRun:
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"'{status}' is not a terminal run status; expected one of {TERMINAL_STATUSES}")

    run = get_run(db, run_id)
    if run.status != RUNNING:
        raise RunStateError(f"load run {run_id} is already sealed with status '{run.status}'")

    run.status = status
    run.completed_at = completed_at or utc_now()
    run.source_row_count = metrics.source_row_count
    run.staged_row_count = metrics.staged_row_count
    run.inserted_row_count = metrics.inserted_row_count
    run.updated_row_count = metrics.updated_row_count
    run.error_row_count = metrics.error_row_count
    run.error_message = error_message
    db.commit()

    logger.info(
        "load run completed",
        extra={"run_id": run.id, "status": status, "duration_seconds": run_duration_seconds(run)},
    )
    return run


def run_duration_seconds(run: LoadRun) -> float | None:
    if run.completed_at is None:
        return None
    return (run.completed_at - run.started_at).total_seconds()


def find_stale_runs(db: Session, *, older_than: datetime) -> list[LoadRun]:
    stmt = (
        select(LoadRun)
        .where(LoadRun.status == RUNNING, LoadRun.started_at < older_than)
        .order_by(LoadRun.id)
    )
    return list(db.execute(stmt).scalars().all())


def fail_stale_runs(db: Session, *, older_than: datetime, completed_at: datetime | None = None) -> list[int]:
    sealed: list[int] = []
    for run in find_stale_runs(db, older_than=older_than):
        run.status = "Failed"
        run.completed_at = completed_at or utc_now()
        run.error_message = "run was never completed; sealed as stale"
        sealed.append(run.id)
    db.commit()
    if sealed:
        logger.warning("stale load runs sealed as failed", extra={"run_ids": sealed})
    return sealed


def create_step(db: Session, *, run_id: int, step_name: str) -> LoadRunStep:
    step = LoadRunStep(run_id=run_id, step_name=step_name, status="started", started_at=utc_now())
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def finish_step_success(db: Session, step: LoadRunStep) -> None:
    finished_at = utc_now()
    step.status = "succeeded"
    step.completed_at = finished_at
    step.duration_ms = (finished_at - step.started_at).total_seconds() * 1000
    step.error = None
    db.commit()


def finish_step_failure(db: Session, step: LoadRunStep, error: str) -> None:
    finished_at = utc_now()
    step.status = "failed"
    step.completed_at = finished_at
    step.duration_ms = (finished_at - step.started_at).total_seconds() * 1000
    step.error = error
    db.commit()
