from datetime import date, datetime
import logging

from sqlalchemy import Insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from organ_etl.db_models import Donor, Recipient, TransplantCenter
from organ_etl.derivations import age_in_years, body_mass_index, days_between
from organ_etl.errors import ResolutionError
from organ_etl.reference import ReferenceStore
from organ_etl.schemas import CenterRecord, DonorRecord, EntityType, LoadResult, RecipientRecord, TypedRecord
from organ_etl.staging import unflagged_records
from organ_etl.validation import to_typed


logger = logging.getLogger(__name__)

PRODUCTION_MODELS = {
    EntityType.DONOR: Donor,
    EntityType.RECIPIENT: Recipient,
    EntityType.CENTER: TransplantCenter,
}

# Columns an upsert must never overwrite on an existing row.
_INSERT_ONLY = ("created_at", "revision")


def valid_records(db: Session, entity_type: EntityType, run_id: int) -> list[TypedRecord]:
    return [to_typed(entity_type, record) for record in unflagged_records(db, entity_type, run_id)]


def load_valid(db: Session, entity_type: EntityType, run_id: int, *, as_of: date, now: datetime) -> LoadResult:
    entity_type = EntityType(entity_type)
    records = valid_records(db, entity_type, run_id)
    if not records:
        logger.info("no valid records to load", extra={"entity_type": entity_type.value, "run_id": run_id})
        return LoadResult()

    reference = ReferenceStore(db)
    if entity_type is EntityType.CENTER:
        rows = [_center_row(record) for record in records]
    else:
        rows = _resolve_person_rows(reference, entity_type, records, as_of)

    model = PRODUCTION_MODELS[entity_type]
    key = "opo_code" if entity_type is EntityType.CENTER else "unos_id"
    inserted = 0
    updated = 0
    try:
        for values in rows:
            values.update(created_at=now, modified_at=now, load_run_id=run_id, revision=1)
            revision = db.execute(_upsert(db, model, key, values)).scalar_one()
            if revision == 1:
                inserted += 1
            else:
                updated += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "production load complete",
        extra={"entity_type": entity_type.value, "run_id": run_id, "inserted": inserted, "updated": updated},
    )
    return LoadResult(inserted=inserted, updated=updated)


def _upsert(db: Session, model, key: str, values: dict[str, object]) -> Insert:
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(model)
    elif dialect == "postgresql":
        stmt = postgresql_insert(model)
    else:
        raise NotImplementedError(f"upsert is not supported for dialect '{dialect}'")

    stmt = stmt.values(**values)
    changes = {name: value for name, value in values.items() if name != key and name not in _INSERT_ONLY}
    changes["revision"] = model.revision + 1
    return stmt.on_conflict_do_update(index_elements=[key], set_=changes).returning(model.revision)


def _resolve_person_rows(
    reference: ReferenceStore,
    entity_type: EntityType,
    records: list[TypedRecord],
    as_of: date,
) -> list[dict[str, object]]:
    snapshot = reference.snapshot(as_of)
    facilities = reference.resolve_facilities(record.opo_code for record in records)

    unresolved: dict[str, str | None] = {}
    rows: list[dict[str, object]] = []
    for record in records:
        organ = record.organ_type if isinstance(record, DonorRecord) else record.needed_organ
        center_id = facilities.get(record.opo_code)
        if center_id is None:
            unresolved[record.unos_id] = record.opo_code
            continue
        if record.blood_type not in snapshot.blood_types:
            unresolved[record.unos_id] = record.blood_type
            continue
        if organ not in snapshot.organ_types:
            unresolved[record.unos_id] = organ
            continue

        if isinstance(record, DonorRecord):
            rows.append(_donor_row(record, center_id, as_of))
        else:
            rows.append(_recipient_row(record, center_id, as_of))

    if unresolved:
        raise ResolutionError(entity_type.value, unresolved)
    return rows


def _donor_row(record: DonorRecord, center_id: int, as_of: date) -> dict[str, object]:
    return {
        "unos_id": record.unos_id,
        "first_name": record.first_name,
        "last_name": record.last_name,
        "date_of_birth": record.date_of_birth,
        "age": age_in_years(record.date_of_birth, as_of),
        "blood_type": record.blood_type,
        "organ_type": record.organ_type,
        "referral_date": record.referral_date,
        "center_id": center_id,
        "donor_type": record.donor_type,
        "status": record.status,
        "cause_of_death": record.cause_of_death,
        "height_cm": record.height_cm,
        "weight_kg": record.weight_kg,
        "bmi": body_mass_index(record.height_cm, record.weight_kg),
        "contact_phone": record.contact_phone,
    }


def _recipient_row(record: RecipientRecord, center_id: int, as_of: date) -> dict[str, object]:
    return {
        "unos_id": record.unos_id,
        "first_name": record.first_name,
        "last_name": record.last_name,
        "date_of_birth": record.date_of_birth,
        "age": age_in_years(record.date_of_birth, as_of),
        "blood_type": record.blood_type,
        "needed_organ": record.needed_organ,
        "listing_date": record.listing_date,
        "days_on_waitlist": days_between(record.listing_date, as_of),
        "center_id": center_id,
        "status": record.status,
        "urgency_code": record.urgency_code,
        "diagnosis": record.diagnosis,
        "height_cm": record.height_cm,
        "weight_kg": record.weight_kg,
        "bmi": body_mass_index(record.height_cm, record.weight_kg),
        "pra_percent": record.pra_percent,
    }


def _center_row(record: CenterRecord) -> dict[str, object]:
    return {
        "opo_code": record.opo_code,
        "opo_name": record.opo_name,
        "city": record.city,
        "state": record.state,
        "region": record.region,
        "center_type": record.center_type,
        "cms_certification": record.cms_certification,
        "accreditation_date": record.accreditation_date,
        "phone": record.phone,
        "email": record.email,
    }
