"""Read-only queries over the production store, error sink and audit ledger."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from organ_etl.db_models import Donor, ErrorRecordRow, LoadRun, Recipient, TransplantCenter
from organ_etl.pipeline import error_rate
from organ_etl.run_store import run_duration_seconds
from organ_etl.schemas import EntityType


HIGH_URGENCY_CODES = ("1A", "1B")


@dataclass(frozen=True)
class RunReconciliation:
    run_id: int
    package_name: str
    entity_type: str | None
    status: str
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: float | None
    source_row_count: int
    staged_row_count: int
    inserted_row_count: int
    updated_row_count: int
    error_row_count: int
    error_rate: float
    balanced: bool


@dataclass(frozen=True)
class ErrorSummaryRow:
    entity_type: str
    error_code: str
    error_column: str | None
    error_count: int


@dataclass(frozen=True)
class ExecutiveSummary:
    active_donors: int
    waitlist_patients: int
    high_urgency_patients: int
    avg_days_on_waitlist: float | None
    active_centers: int
    last_successful_load: datetime | None


def query_donors(
    db: Session,
    *,
    status: str | None = None,
    blood_type: str | None = None,
    organ_type: str | None = None,
    opo_code: str | None = None,
) -> list[Donor]:
    stmt = select(Donor).join(TransplantCenter, Donor.center_id == TransplantCenter.id)
    if status is not None:
        stmt = stmt.where(Donor.status == status)
    if blood_type is not None:
        stmt = stmt.where(Donor.blood_type == blood_type)
    if organ_type is not None:
        stmt = stmt.where(Donor.organ_type == organ_type)
    if opo_code is not None:
        stmt = stmt.where(TransplantCenter.opo_code == opo_code)
    return list(db.execute(stmt.order_by(Donor.unos_id)).scalars().all())


def query_recipients(
    db: Session,
    *,
    status: str | None = None,
    blood_type: str | None = None,
    urgency_code: str | None = None,
    opo_code: str | None = None,
) -> list[Recipient]:
    stmt = select(Recipient).join(TransplantCenter, Recipient.center_id == TransplantCenter.id)
    if status is not None:
        stmt = stmt.where(Recipient.status == status)
    if blood_type is not None:
        stmt = stmt.where(Recipient.blood_type == blood_type)
    if urgency_code is not None:
        stmt = stmt.where(Recipient.urgency_code == urgency_code)
    if opo_code is not None:
        stmt = stmt.where(TransplantCenter.opo_code == opo_code)
    return list(db.execute(stmt.order_by(Recipient.unos_id)).scalars().all())


def query_errors(
    db: Session,
    *,
    run_id: int | None = None,
    error_code: str | None = None,
    entity_type: EntityType | None = None,
) -> list[ErrorRecordRow]:
    stmt = select(ErrorRecordRow)
    if run_id is not None:
        stmt = stmt.where(ErrorRecordRow.run_id == run_id)
    if error_code is not None:
        stmt = stmt.where(ErrorRecordRow.error_code == error_code)
    if entity_type is not None:
        stmt = stmt.where(ErrorRecordRow.entity_type == EntityType(entity_type).value)
    stmt = stmt.order_by(ErrorRecordRow.run_id, ErrorRecordRow.source_row_number)
    return list(db.execute(stmt).scalars().all())


def query_runs(
    db: Session,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    status: str | None = None,
) -> list[LoadRun]:
    stmt = select(LoadRun)
    if since is not None:
        stmt = stmt.where(LoadRun.started_at >= since)
    if until is not None:
        stmt = stmt.where(LoadRun.started_at < until)
    if status is not None:
        stmt = stmt.where(LoadRun.status == status)
    return list(db.execute(stmt.order_by(LoadRun.started_at.desc(), LoadRun.id.desc())).scalars().all())


def reconciliation(
    db: Session,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    status: str | None = None,
) -> list[RunReconciliation]:
    rows: list[RunReconciliation] = []
    for run in query_runs(db, since=since, until=until, status=status):
        source = run.source_row_count or 0
        staged = run.staged_row_count or 0
        inserted = run.inserted_row_count or 0
        updated = run.updated_row_count or 0
        errors = run.error_row_count or 0
        rows.append(
            RunReconciliation(
                run_id=run.id,
                package_name=run.package_name,
                entity_type=run.entity_type,
                status=run.status,
                started_at=run.started_at,
                completed_at=run.completed_at,
                duration_seconds=run_duration_seconds(run),
                source_row_count=source,
                staged_row_count=staged,
                inserted_row_count=inserted,
                updated_row_count=updated,
                error_row_count=errors,
                error_rate=round(error_rate(errors, source), 2),
                balanced=staged == errors + inserted + updated,
            )
        )
    return rows


def error_summary(db: Session, *, since: datetime | None = None) -> list[ErrorSummaryRow]:
    stmt = select(
        ErrorRecordRow.entity_type,
        ErrorRecordRow.error_code,
        ErrorRecordRow.error_column,
        func.count(ErrorRecordRow.id),
    )
    if since is not None:
        stmt = stmt.where(ErrorRecordRow.created_at >= since)
    stmt = stmt.group_by(ErrorRecordRow.entity_type, ErrorRecordRow.error_code, ErrorRecordRow.error_column)
    stmt = stmt.order_by(func.count(ErrorRecordRow.id).desc(), ErrorRecordRow.error_code)
    return [
        ErrorSummaryRow(entity_type=entity, error_code=code, error_column=column, error_count=count)
        for entity, code, column, count in db.execute(stmt).all()
    ]


def executive_summary(db: Session) -> ExecutiveSummary:
    active_donors = db.execute(select(func.count(Donor.id)).where(Donor.status == "Active")).scalar_one()
    waitlist = db.execute(select(func.count(Recipient.id))).scalar_one()
    high_urgency = db.execute(
        select(func.count(Recipient.id)).where(Recipient.urgency_code.in_(HIGH_URGENCY_CODES))
    ).scalar_one()
    avg_days = db.execute(select(func.avg(Recipient.days_on_waitlist))).scalar_one()
    active_centers = db.execute(
        select(func.count(TransplantCenter.id)).where(TransplantCenter.is_active.is_(True))
    ).scalar_one()
    last_success = db.execute(
        select(func.max(LoadRun.completed_at)).where(LoadRun.status == "Success")
    ).scalar_one()
    return ExecutiveSummary(
        active_donors=active_donors,
        waitlist_patients=waitlist,
        high_urgency_patients=high_urgency,
        avg_days_on_waitlist=float(avg_days) if avg_days is not None else None,
        active_centers=active_centers,
        last_successful_load=last_success,
    )
