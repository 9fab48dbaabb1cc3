from collections.abc import Iterable
import logging
import threading

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from organ_etl.db_models import ErrorRecordRow, StagedRecord, utc_now
from organ_etl.schemas import EntityType, RawRecord


logger = logging.getLogger(__name__)

# Staging is a single-writer buffer per entity type.
_STAGE_LOCKS: dict[EntityType, threading.Lock] = {entity_type: threading.Lock() for entity_type in EntityType}


def stage(db: Session, entity_type: EntityType, records: Iterable[RawRecord], run_id: int) -> int:
    entity_type = EntityType(entity_type)
    staged_at = utc_now()

    with _STAGE_LOCKS[entity_type]:
        try:
            # Truncate-and-load; errors from earlier runs stay in the sink.
            db.execute(delete(StagedRecord).where(StagedRecord.entity_type == entity_type.value))
            count = 0
            for position, record in enumerate(records, start=1):
                row_number = record.source_row_number or position
                db.add(
                    StagedRecord(
                        entity_type=entity_type.value,
                        run_id=run_id,
                        source_file_name=record.source_file_name,
                        source_row_number=row_number,
                        natural_key=record.natural_key,
                        raw_values=dict(record.values),
                        staged_at=staged_at,
                    )
                )
                count += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("staged records", extra={"entity_type": entity_type.value, "run_id": run_id, "staged": count})
    return count


def staged_records(db: Session, entity_type: EntityType, run_id: int) -> list[RawRecord]:
    stmt = (
        select(StagedRecord)
        .where(StagedRecord.entity_type == EntityType(entity_type).value, StagedRecord.run_id == run_id)
        .order_by(StagedRecord.source_row_number)
    )
    return [_to_raw(row) for row in db.execute(stmt).scalars().all()]


def unflagged_records(db: Session, entity_type: EntityType, run_id: int) -> list[RawRecord]:
    """Staged records for ``run_id`` that have no row in the error sink."""
    entity_value = EntityType(entity_type).value
    flagged = (
        select(ErrorRecordRow.id)
        .where(
            ErrorRecordRow.entity_type == entity_value,
            ErrorRecordRow.run_id == run_id,
            ErrorRecordRow.source_row_number == StagedRecord.source_row_number,
        )
        .exists()
    )
    stmt = (
        select(StagedRecord)
        .where(StagedRecord.entity_type == entity_value, StagedRecord.run_id == run_id, ~flagged)
        .order_by(StagedRecord.source_row_number)
    )
    return [_to_raw(row) for row in db.execute(stmt).scalars().all()]


def _to_raw(row: StagedRecord) -> RawRecord:
    return RawRecord(
        entity_type=EntityType(row.entity_type),
        values=dict(row.raw_values),
        source_file_name=row.source_file_name,
        source_row_number=row.source_row_number,
        run_id=row.run_id,
    )
