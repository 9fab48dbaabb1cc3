"""Ordered data-quality rule catalogs, one per entity type.

Codes VLD001-VLD010 cover completeness and the checks shared by every
entity, VLD011-VLD020 format and range validity, VLD031-VLD040 business
codes. A record is reported against the first rule it violates, so the
order of each catalog is significant.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
import math
import re

from organ_etl.derivations import age_in_years
from organ_etl.reference import DONOR_STATUS, DONOR_TYPE, URGENCY, WAITLIST_STATUS, ReferenceSnapshot
from organ_etl.schemas import EntityType, RawRecord


DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")
MAX_AGE_YEARS = 120
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
STATE_PATTERN = re.compile(r"^[A-Za-z]{2}$")


def clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_date(value: str | None) -> date | None:
    value = clean(value)
    if value is None:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_number(value: str | None) -> float | None:
    value = clean(value)
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_int(value: str | None) -> int | None:
    value = clean(value)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


Predicate = Callable[[RawRecord, ReferenceSnapshot], bool]


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "NULL"


@dataclass(frozen=True)
class ValidationRule:
    code: str
    column: str
    predicate: Predicate
    template: str

    def fails(self, record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        return self.predicate(record, ctx)

    def describe(self, record: RawRecord) -> str:
        values = _TemplateValues({key: value for key, value in record.values.items() if value is not None})
        return self.template.format_map(values)


# Predicates. Each returns True when the record violates the rule.


def _missing(*fields: str) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        return any(clean(record.get(name)) is None for name in fields)

    return predicate


def _not_in_reference(field: str, lookup: Callable[[ReferenceSnapshot], frozenset[str]]) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        return clean(record.get(field)) not in lookup(ctx)

    return predicate


def _not_in_code_set(field: str, code_set: str) -> Predicate:
    return _not_in_reference(field, lambda ctx: ctx.codes(code_set))


def _unparseable_date(field: str) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        return parse_date(record.get(field)) is None

    return predicate


def _optional_unparseable_date(field: str) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        return clean(record.get(field)) is not None and parse_date(record.get(field)) is None

    return predicate


def _future_date(field: str) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        parsed = parse_date(record.get(field))
        return parsed is not None and parsed > ctx.as_of

    return predicate


def _age_out_of_range(field: str) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        parsed = parse_date(record.get(field))
        if parsed is None:
            return False
        age = age_in_years(parsed, ctx.as_of)
        return age < 0 or age > MAX_AGE_YEARS

    return predicate


def _bad_measurements(*fields: str, pra_field: str | None = None) -> Predicate:
    def predicate(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
        for name in fields:
            if clean(record.get(name)) is None:
                continue
            number = parse_number(record.get(name))
            if number is None or number <= 0:
                return True
        if pra_field and clean(record.get(pra_field)) is not None:
            pra = parse_number(record.get(pra_field))
            if pra is None or pra < 0 or pra > 100:
                return True
        return False

    return predicate


def _region_out_of_range(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
    region = parse_int(record.get("region"))
    return region is None or not 1 <= region <= 11


def _bad_state(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
    return not STATE_PATTERN.match(clean(record.get("state")) or "")


def _bad_email(record: RawRecord, ctx: ReferenceSnapshot) -> bool:
    email = clean(record.get("email"))
    return email is not None and not EMAIL_PATTERN.match(email)


def _birth_date_rules() -> list[ValidationRule]:
    return [
        ValidationRule(
            "VLD003",
            "DateOfBirth",
            _unparseable_date("date_of_birth"),
            "Invalid or missing date of birth: '{date_of_birth}'",
        ),
        ValidationRule(
            "VLD003",
            "DateOfBirth",
            _future_date("date_of_birth"),
            "Date of birth cannot be in the future: {date_of_birth}",
        ),
        ValidationRule(
            "VLD003",
            "DateOfBirth",
            _age_out_of_range("date_of_birth"),
            "Age exceeds valid range (0-120 years): {date_of_birth}",
        ),
    ]


def _secondary_date_rules(field: str, column: str, label: str) -> list[ValidationRule]:
    return [
        ValidationRule("VLD012", column, _unparseable_date(field), f"Invalid or missing {label}: '{{{field}}}'"),
        ValidationRule("VLD012", column, _future_date(field), f"{label.capitalize()} cannot be in the future: {{{field}}}"),
    ]


_REQUIRED_PERSON = ValidationRule(
    "VLD001",
    "UNOS_ID/Name",
    _missing("unos_id", "first_name", "last_name"),
    "Required field is NULL or empty. UNOS_ID, FirstName, and LastName are mandatory.",
)

_BLOOD_TYPE = ValidationRule(
    "VLD002",
    "BloodType",
    _not_in_reference("blood_type", lambda ctx: ctx.blood_types),
    "Invalid blood type: '{blood_type}'. Valid values: O+, O-, A+, A-, B+, B-, AB+, AB-",
)

_FACILITY = ValidationRule(
    "VLD004",
    "OPO_Code",
    _not_in_reference("opo_code", lambda ctx: ctx.facility_codes),
    "OPO code not found in active transplant centers: '{opo_code}'",
)


DONOR_RULES: tuple[ValidationRule, ...] = (
    _REQUIRED_PERSON,
    _BLOOD_TYPE,
    ValidationRule(
        "VLD011",
        "OrganType",
        _not_in_reference("organ_type", lambda ctx: ctx.organ_types),
        "Invalid organ type: '{organ_type}'",
    ),
    *_birth_date_rules(),
    *_secondary_date_rules("referral_date", "ReferralDate", "referral date"),
    _FACILITY,
    ValidationRule(
        "VLD005",
        "Status",
        _not_in_code_set("status", DONOR_STATUS),
        "Invalid status: '{status}'. Valid values: Active, Inactive, Pending",
    ),
    ValidationRule(
        "VLD031",
        "DonorType",
        _not_in_code_set("donor_type", DONOR_TYPE),
        "Invalid donor type: '{donor_type}'. Valid values: DBD, DCD",
    ),
    ValidationRule(
        "VLD013",
        "Height_cm/Weight_kg",
        _bad_measurements("height_cm", "weight_kg"),
        "Height and weight must be positive numbers: height='{height_cm}', weight='{weight_kg}'",
    ),
)

RECIPIENT_RULES: tuple[ValidationRule, ...] = (
    _REQUIRED_PERSON,
    _BLOOD_TYPE,
    ValidationRule(
        "VLD011",
        "NeededOrgan",
        _not_in_reference("needed_organ", lambda ctx: ctx.organ_types),
        "Invalid needed organ: '{needed_organ}'",
    ),
    *_birth_date_rules(),
    *_secondary_date_rules("listing_date", "ListingDate", "listing date"),
    _FACILITY,
    ValidationRule(
        "VLD005",
        "Status",
        _not_in_code_set("status", WAITLIST_STATUS),
        "Invalid waitlist status: '{status}'. Valid values: 1, 1A, 1B, 2, 3, 7",
    ),
    ValidationRule(
        "VLD032",
        "UrgencyCode",
        _not_in_code_set("urgency_code", URGENCY),
        "Invalid urgency code: '{urgency_code}'. Valid values: 1A, 1B, 2, 3",
    ),
    ValidationRule(
        "VLD013",
        "Height_cm/Weight_kg/PRA_Percent",
        _bad_measurements("height_cm", "weight_kg", pra_field="pra_percent"),
        "Invalid measurement: height='{height_cm}', weight='{weight_kg}', PRA='{pra_percent}'",
    ),
)

CENTER_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        "VLD001",
        "OPO_Code/Name",
        _missing("opo_code", "opo_name", "city", "state", "center_type"),
        "Required field is NULL or empty. OPO_Code, OPO_Name, City, State, and CenterType are mandatory.",
    ),
    ValidationRule("VLD014", "Region", _region_out_of_range, "Region must be an integer from 1 to 11: '{region}'"),
    ValidationRule("VLD015", "State", _bad_state, "State must be a two-letter code: '{state}'"),
    ValidationRule(
        "VLD012",
        "AccreditationDate",
        _optional_unparseable_date("accreditation_date"),
        "Invalid accreditation date: '{accreditation_date}'",
    ),
    ValidationRule(
        "VLD012",
        "AccreditationDate",
        _future_date("accreditation_date"),
        "Accreditation date cannot be in the future: {accreditation_date}",
    ),
    ValidationRule("VLD016", "Email", _bad_email, "Invalid email address: '{email}'"),
)

RULE_CATALOG: dict[EntityType, tuple[ValidationRule, ...]] = {
    EntityType.DONOR: DONOR_RULES,
    EntityType.RECIPIENT: RECIPIENT_RULES,
    EntityType.CENTER: CENTER_RULES,
}
