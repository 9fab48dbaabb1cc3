from datetime import date
import warnings

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SADeprecationWarning

from conftest import center_values, donor_values, recipient_values
from organ_etl.db_models import StatusCode
from organ_etl.reference import (
    DONOR_STATUS,
    DONOR_TYPE,
    STATUS_CODES,
    URGENCY,
    WAITLIST_STATUS,
    ReferenceSnapshot,
    ReferenceStore,
    seed_reference_data,
)
from organ_etl.rules import CENTER_RULES, DONOR_RULES, RECIPIENT_RULES
from organ_etl.schemas import CenterRecord, DonorRecord, EntityType, Invalid, RawRecord, RecipientRecord, Valid
from organ_etl.validation import evaluate


@pytest.fixture()
def ctx() -> ReferenceSnapshot:
    code_sets: dict[str, set[str]] = {}
    for code_set, code, _name, _category in STATUS_CODES:
        code_sets.setdefault(code_set, set()).add(code)
    return ReferenceSnapshot(
        as_of=date(2025, 6, 1),
        blood_types=frozenset({"O+", "O-", "A+", "A-", "B+", "B-", "AB+", "AB-"}),
        organ_types=frozenset({"Kidney", "Liver", "Heart", "Lung", "Pancreas", "Intestine"}),
        code_sets={name: frozenset(codes) for name, codes in code_sets.items()},
        facility_codes=frozenset({"NYRT", "CAOP"}),
    )


def _record(entity_type: EntityType, values: dict[str, str | None]) -> RawRecord:
    return RawRecord(entity_type=entity_type, values=values, source_file_name="input.csv", source_row_number=7, run_id=3)


def _error_code(entity_type: EntityType, values: dict[str, str | None], ctx: ReferenceSnapshot) -> str | None:
    result = evaluate(entity_type, _record(entity_type, values), ctx)
    if isinstance(result, Invalid):
        return result.error.error_code
    return None


def test_valid_donor_converts_to_typed_record(ctx) -> None:
    result = evaluate(EntityType.DONOR, _record(EntityType.DONOR, donor_values(height_cm=" 178 ")), ctx)

    assert isinstance(result, Valid)
    assert isinstance(result.record, DonorRecord)
    assert result.record.date_of_birth == date(1985, 3, 15)
    assert result.record.height_cm == 178.0


def test_valid_recipient_and_center_convert(ctx) -> None:
    recipient = evaluate(EntityType.RECIPIENT, _record(EntityType.RECIPIENT, recipient_values(pra_percent=None)), ctx)
    center = evaluate(EntityType.CENTER, _record(EntityType.CENTER, center_values(state="ny")), ctx)

    assert isinstance(recipient, Valid)
    assert isinstance(recipient.record, RecipientRecord)
    assert recipient.record.pra_percent is None
    assert isinstance(center, Valid)
    assert isinstance(center.record, CenterRecord)
    assert center.record.state == "NY"
    assert center.record.region == 9


@pytest.mark.parametrize(
    ("overrides", "expected_code"),
    [
        ({"unos_id": "  "}, "VLD001"),
        ({"first_name": None}, "VLD001"),
        ({"blood_type": "X+"}, "VLD002"),
        ({"organ_type": "Cornea"}, "VLD011"),
        ({"date_of_birth": None}, "VLD003"),
        ({"date_of_birth": "not-a-date"}, "VLD003"),
        ({"date_of_birth": "2030-07-22"}, "VLD003"),
        ({"date_of_birth": "1890-01-01"}, "VLD003"),
        ({"referral_date": ""}, "VLD012"),
        ({"referral_date": "2026-01-01"}, "VLD012"),
        ({"opo_code": "INVALID"}, "VLD004"),
        ({"status": "Unknown"}, "VLD005"),
        ({"donor_type": "XYZ"}, "VLD031"),
        ({"height_cm": "tall"}, "VLD013"),
        ({"weight_kg": "-5"}, "VLD013"),
    ],
)
def test_every_donor_rule_is_enforced(ctx, overrides, expected_code) -> None:
    assert _error_code(EntityType.DONOR, donor_values(**overrides), ctx) == expected_code


@pytest.mark.parametrize(
    ("overrides", "expected_code"),
    [
        ({"last_name": ""}, "VLD001"),
        ({"blood_type": "Z-"}, "VLD002"),
        ({"needed_organ": None}, "VLD011"),
        ({"date_of_birth": None}, "VLD003"),
        ({"listing_date": "2030-04-10"}, "VLD012"),
        ({"listing_date": "13/45/2020"}, "VLD012"),
        ({"opo_code": "BADCODE"}, "VLD004"),
        ({"status": "Active"}, "VLD005"),
        ({"urgency_code": "9"}, "VLD032"),
        ({"pra_percent": "150"}, "VLD013"),
        ({"height_cm": "0"}, "VLD013"),
    ],
)
def test_every_recipient_rule_is_enforced(ctx, overrides, expected_code) -> None:
    assert _error_code(EntityType.RECIPIENT, recipient_values(**overrides), ctx) == expected_code


@pytest.mark.parametrize(
    ("overrides", "expected_code"),
    [
        ({"opo_name": None}, "VLD001"),
        ({"city": " "}, "VLD001"),
        ({"region": "12"}, "VLD014"),
        ({"region": "nine"}, "VLD014"),
        ({"state": "New York"}, "VLD015"),
        ({"accreditation_date": "someday"}, "VLD012"),
        ({"accreditation_date": "2027-01-01"}, "VLD012"),
        ({"email": "not-an-email"}, "VLD016"),
    ],
)
def test_every_center_rule_is_enforced(ctx, overrides, expected_code) -> None:
    assert _error_code(EntityType.CENTER, center_values(**overrides), ctx) == expected_code


def test_center_optional_fields_may_be_blank(ctx) -> None:
    values = center_values(accreditation_date=None, email=None, cms_certification=None, phone=None)
    assert _error_code(EntityType.CENTER, values, ctx) is None


def test_first_matching_rule_wins(ctx) -> None:
    # Bad blood type, future birth date, unknown facility and bad status at once.
    values = donor_values(blood_type="X+", date_of_birth="2030-07-22", opo_code="NOPE", status="Unknown")

    result = evaluate(EntityType.DONOR, _record(EntityType.DONOR, values), ctx)

    assert isinstance(result, Invalid)
    assert result.error.error_code == "VLD002"
    assert result.error.error_column == "BloodType"


def test_error_record_keeps_original_values_and_lineage(ctx) -> None:
    values = donor_values(unos_id="ZZZZ-00003", date_of_birth="2030-07-22")

    result = evaluate(EntityType.DONOR, _record(EntityType.DONOR, values), ctx)

    assert isinstance(result, Invalid)
    error = result.error
    assert error.error_description == "Date of birth cannot be in the future: 2030-07-22"
    assert error.natural_key == "ZZZZ-00003"
    assert error.raw_values == values
    assert error.run_id == 3
    assert error.source_row_number == 7


def test_missing_values_render_as_null_in_messages(ctx) -> None:
    result = evaluate(EntityType.DONOR, _record(EntityType.DONOR, donor_values(date_of_birth=None)), ctx)

    assert isinstance(result, Invalid)
    assert result.error.error_description == "Invalid or missing date of birth: 'NULL'"


def test_catalog_order_follows_rule_categories() -> None:
    donor_codes = [rule.code for rule in DONOR_RULES]
    recipient_codes = [rule.code for rule in RECIPIENT_RULES]

    assert donor_codes.index("VLD001") < donor_codes.index("VLD002") < donor_codes.index("VLD003")
    assert donor_codes.index("VLD003") < donor_codes.index("VLD004") < donor_codes.index("VLD005")
    assert recipient_codes.index("VLD004") < recipient_codes.index("VLD032")
    assert CENTER_RULES[0].code == "VLD001"


def test_code_sets_cover_every_catalog_reference() -> None:
    seeded = {code_set for code_set, *_ in STATUS_CODES}
    assert {DONOR_STATUS, WAITLIST_STATUS, URGENCY, DONOR_TYPE} <= seeded


def test_seeding_and_snapshot_are_repeatable_without_warnings(db) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error", SADeprecationWarning)
        seed_reference_data(db)
        seed_reference_data(db)
        snapshot = ReferenceStore(db).snapshot(date(2025, 6, 1))

    assert db.execute(select(func.count()).select_from(StatusCode)).scalar_one() == len(STATUS_CODES)
    assert snapshot.code_sets[URGENCY] == frozenset({"1A", "1B", "2", "3"})
