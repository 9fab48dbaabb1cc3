from datetime import date, datetime

import pytest
from sqlalchemy import func, select, update

from conftest import donor_values, recipient_values
from organ_etl.db_models import Donor, Recipient, TransplantCenter
from organ_etl.errors import ResolutionError
from organ_etl.loader import load_valid, valid_records
from organ_etl.run_store import start_run
from organ_etl.schemas import EntityType
from organ_etl.staging import stage
from organ_etl.validation import validate


AS_OF = date(2025, 6, 1)
NOW = datetime(2025, 6, 1, 12, 0, 0)


def _stage_and_validate(db, make_records, entity_type, rows) -> int:
    run_id = start_run(db, package_name=f"test.{entity_type.value}", started_at=NOW).id
    stage(db, entity_type, make_records(entity_type, rows), run_id)
    validate(db, entity_type, run_id, as_of=AS_OF)
    return run_id


def test_load_inserts_only_records_without_errors(db, make_records, loaded_centers) -> None:
    rows = [donor_values(), donor_values(unos_id="YYYY-00002", blood_type="X+")]
    run_id = _stage_and_validate(db, make_records, EntityType.DONOR, rows)

    result = load_valid(db, EntityType.DONOR, run_id, as_of=AS_OF, now=NOW)

    assert (result.inserted, result.updated) == (1, 0)
    donors = db.execute(select(Donor)).scalars().all()
    assert [donor.unos_id for donor in donors] == ["ABJK-78234"]
    assert donors[0].load_run_id == run_id
    assert donors[0].created_at == NOW
    assert donors[0].center.opo_code == "NYRT"


def test_derived_fields_are_computed_against_run_date(db, make_records, loaded_centers) -> None:
    run_id = _stage_and_validate(
        db,
        make_records,
        EntityType.RECIPIENT,
        [recipient_values(), recipient_values(unos_id="RCPT-10002", height_cm=None)],
    )

    load_valid(db, EntityType.RECIPIENT, run_id, as_of=AS_OF, now=NOW)

    first = db.execute(select(Recipient).where(Recipient.unos_id == "RCPT-10001")).scalar_one()
    second = db.execute(select(Recipient).where(Recipient.unos_id == "RCPT-10002")).scalar_one()
    assert first.age == 59
    assert first.days_on_waitlist == 717
    assert first.bmi == 26.7
    assert first.pra_percent == 15.0
    assert second.bmi is None
    assert second.weight_kg == 70.0


def test_reloading_same_key_updates_in_place(db, make_records, loaded_centers) -> None:
    first_run = _stage_and_validate(db, make_records, EntityType.DONOR, [donor_values(status="Pending")])
    load_valid(db, EntityType.DONOR, first_run, as_of=AS_OF, now=NOW)

    later = datetime(2025, 6, 2, 8, 0, 0)
    second_run = _stage_and_validate(db, make_records, EntityType.DONOR, [donor_values(status="Active")])
    result = load_valid(db, EntityType.DONOR, second_run, as_of=AS_OF, now=later)

    assert (result.inserted, result.updated) == (0, 1)
    db.expire_all()
    donor = db.execute(select(Donor)).scalar_one()
    assert donor.status == "Active"
    assert donor.created_at == NOW
    assert donor.modified_at == later
    assert donor.load_run_id == second_run
    assert donor.revision == 2


def test_loading_same_run_twice_is_idempotent(db, make_records, loaded_centers) -> None:
    run_id = _stage_and_validate(db, make_records, EntityType.DONOR, [donor_values()])

    load_valid(db, EntityType.DONOR, run_id, as_of=AS_OF, now=NOW)
    load_valid(db, EntityType.DONOR, run_id, as_of=AS_OF, now=NOW)

    assert db.execute(select(func.count(Donor.id))).scalar_one() == 1


def test_duplicate_key_within_one_batch_counts_insert_then_update(db, make_records, loaded_centers) -> None:
    rows = [donor_values(status="Pending"), donor_values(status="Inactive")]
    run_id = _stage_and_validate(db, make_records, EntityType.DONOR, rows)

    result = load_valid(db, EntityType.DONOR, run_id, as_of=AS_OF, now=NOW)

    assert (result.inserted, result.updated) == (1, 1)
    db.expire_all()
    assert db.execute(select(Donor.status)).scalar_one() == "Inactive"


def test_facility_deactivated_after_validation_raises(db, make_records, loaded_centers) -> None:
    run_id = _stage_and_validate(db, make_records, EntityType.DONOR, [donor_values(), donor_values(unos_id="B-2", opo_code="CAOP")])
    db.execute(update(TransplantCenter).where(TransplantCenter.opo_code == "CAOP").values(is_active=False))
    db.commit()

    with pytest.raises(ResolutionError) as excinfo:
        load_valid(db, EntityType.DONOR, run_id, as_of=AS_OF, now=NOW)

    assert excinfo.value.unresolved == {"B-2": "CAOP"}
    assert db.execute(select(func.count(Donor.id))).scalar_one() == 0


def test_center_upsert_updates_mutable_fields(db, make_records, loaded_centers) -> None:
    rows = [
        {
            "opo_code": "NYRT",
            "opo_name": "NY Regional Transplant",
            "city": "Albany",
            "state": "NY",
            "region": "9",
            "center_type": "Comprehensive",
        }
    ]
    run_id = _stage_and_validate(db, make_records, EntityType.CENTER, rows)

    result = load_valid(db, EntityType.CENTER, run_id, as_of=AS_OF, now=NOW)

    assert (result.inserted, result.updated) == (0, 1)
    db.expire_all()
    center = db.execute(select(TransplantCenter).where(TransplantCenter.opo_code == "NYRT")).scalar_one()
    assert center.opo_name == "NY Regional Transplant"
    assert center.city == "Albany"
    assert center.is_active is True
    assert db.execute(select(func.count(TransplantCenter.id))).scalar_one() == 3


def test_valid_records_excludes_flagged_rows(db, make_records, loaded_centers) -> None:
    rows = [donor_values(), donor_values(unos_id="B-2", status="Unknown"), donor_values(unos_id="C-3")]
    run_id = _stage_and_validate(db, make_records, EntityType.DONOR, rows)

    assert [record.unos_id for record in valid_records(db, EntityType.DONOR, run_id)] == ["ABJK-78234", "C-3"]
