from datetime import date
import logging

from sqlalchemy import delete
from sqlalchemy.orm import Session

from organ_etl.db_models import ErrorRecordRow, utc_now
from organ_etl.reference import ReferenceSnapshot, ReferenceStore
from organ_etl.rules import RULE_CATALOG, ValidationRule, clean, parse_date, parse_int, parse_number
from organ_etl.schemas import (
    CenterRecord,
    DonorRecord,
    EntityType,
    ErrorRecord,
    Invalid,
    RawRecord,
    RecipientRecord,
    TypedRecord,
    Valid,
    ValidationResult,
)
from organ_etl.staging import staged_records


logger = logging.getLogger(__name__)


def evaluate(
    entity_type: EntityType,
    record: RawRecord,
    ctx: ReferenceSnapshot,
    rules: tuple[ValidationRule, ...] | None = None,
) -> ValidationResult:
    """Run the rule chain for one record; the first violated rule decides the error."""
    chain = RULE_CATALOG[EntityType(entity_type)] if rules is None else rules
    for rule in chain:
        if rule.fails(record, ctx):
            return Invalid(
                ErrorRecord(
                    entity_type=EntityType(entity_type),
                    run_id=record.run_id,
                    natural_key=record.natural_key,
                    source_file_name=record.source_file_name,
                    source_row_number=record.source_row_number,
                    raw_values=dict(record.values),
                    error_code=rule.code,
                    error_column=rule.column,
                    error_description=rule.describe(record),
                )
            )
    return Valid(to_typed(entity_type, record))


def to_typed(entity_type: EntityType, record: RawRecord) -> TypedRecord:
    """Convert a record that passed its rule chain. Raises ValueError otherwise."""
    entity_type = EntityType(entity_type)
    if entity_type is EntityType.DONOR:
        return DonorRecord(
            unos_id=_required(record, "unos_id"),
            first_name=_required(record, "first_name"),
            last_name=_required(record, "last_name"),
            date_of_birth=_required_date(record, "date_of_birth"),
            blood_type=_required(record, "blood_type"),
            organ_type=_required(record, "organ_type"),
            referral_date=_required_date(record, "referral_date"),
            opo_code=_required(record, "opo_code"),
            donor_type=_required(record, "donor_type"),
            status=_required(record, "status"),
            cause_of_death=clean(record.get("cause_of_death")),
            height_cm=parse_number(record.get("height_cm")),
            weight_kg=parse_number(record.get("weight_kg")),
            contact_phone=clean(record.get("contact_phone")),
        )
    if entity_type is EntityType.RECIPIENT:
        return RecipientRecord(
            unos_id=_required(record, "unos_id"),
            first_name=_required(record, "first_name"),
            last_name=_required(record, "last_name"),
            date_of_birth=_required_date(record, "date_of_birth"),
            blood_type=_required(record, "blood_type"),
            needed_organ=_required(record, "needed_organ"),
            listing_date=_required_date(record, "listing_date"),
            opo_code=_required(record, "opo_code"),
            status=_required(record, "status"),
            urgency_code=_required(record, "urgency_code"),
            diagnosis=clean(record.get("diagnosis")),
            height_cm=parse_number(record.get("height_cm")),
            weight_kg=parse_number(record.get("weight_kg")),
            pra_percent=parse_number(record.get("pra_percent")),
        )

    region = parse_int(record.get("region"))
    if region is None:
        raise ValueError(f"region is not an integer in row {record.source_row_number}")
    return CenterRecord(
        opo_code=_required(record, "opo_code"),
        opo_name=_required(record, "opo_name"),
        city=_required(record, "city"),
        state=_required(record, "state").upper(),
        region=region,
        center_type=_required(record, "center_type"),
        cms_certification=clean(record.get("cms_certification")),
        accreditation_date=parse_date(record.get("accreditation_date")),
        phone=clean(record.get("phone")),
        email=clean(record.get("email")),
    )


def validate(db: Session, entity_type: EntityType, run_id: int, *, as_of: date) -> int:
    entity_type = EntityType(entity_type)
    ctx = ReferenceStore(db).snapshot(as_of)
    records = staged_records(db, entity_type, run_id)

    errors: list[ErrorRecord] = []
    for record in records:
        result = evaluate(entity_type, record, ctx)
        if isinstance(result, Invalid):
            errors.append(result.error)

    created_at = utc_now()
    try:
        # Re-validating a run replaces its earlier errors rather than adding to them.
        db.execute(
            delete(ErrorRecordRow).where(
                ErrorRecordRow.entity_type == entity_type.value,
                ErrorRecordRow.run_id == run_id,
            )
        )
        for error in errors:
            db.add(
                ErrorRecordRow(
                    entity_type=entity_type.value,
                    run_id=run_id,
                    source_file_name=error.source_file_name,
                    source_row_number=error.source_row_number,
                    natural_key=error.natural_key,
                    raw_values=error.raw_values,
                    error_code=error.error_code,
                    error_column=error.error_column,
                    error_description=error.error_description[:500],
                    created_at=created_at,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "validation complete",
        extra={
            "entity_type": entity_type.value,
            "run_id": run_id,
            "checked": len(records),
            "errors": len(errors),
        },
    )
    return len(errors)


def _required(record: RawRecord, name: str) -> str:
    value = clean(record.get(name))
    if value is None:
        raise ValueError(f"{name} is required in row {record.source_row_number}")
    return value


def _required_date(record: RawRecord, name: str) -> date:
    value = parse_date(record.get(name))
    if value is None:
        raise ValueError(f"{name} is not a valid date in row {record.source_row_number}")
    return value
