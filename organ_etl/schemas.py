from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum


class EntityType(StrEnum):
    CENTER = "center"
    DONOR = "donor"
    RECIPIENT = "recipient"


DONOR_FIELDS = (
    "unos_id",
    "first_name",
    "last_name",
    "date_of_birth",
    "blood_type",
    "organ_type",
    "referral_date",
    "opo_code",
    "donor_type",
    "status",
    "cause_of_death",
    "height_cm",
    "weight_kg",
    "contact_phone",
)

RECIPIENT_FIELDS = (
    "unos_id",
    "first_name",
    "last_name",
    "date_of_birth",
    "blood_type",
    "needed_organ",
    "listing_date",
    "opo_code",
    "status",
    "urgency_code",
    "diagnosis",
    "height_cm",
    "weight_kg",
    "pra_percent",
)

CENTER_FIELDS = (
    "opo_code",
    "opo_name",
    "city",
    "state",
    "region",
    "center_type",
    "cms_certification",
    "accreditation_date",
    "phone",
    "email",
)

ENTITY_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.DONOR: DONOR_FIELDS,
    EntityType.RECIPIENT: RECIPIENT_FIELDS,
    EntityType.CENTER: CENTER_FIELDS,
}

NATURAL_KEYS: dict[EntityType, str] = {
    EntityType.DONOR: "unos_id",
    EntityType.RECIPIENT: "unos_id",
    EntityType.CENTER: "opo_code",
}


@dataclass(frozen=True)
class RawRecord:
    entity_type: EntityType
    values: dict[str, str | None]
    source_file_name: str | None = None
    source_row_number: int | None = None
    run_id: int | None = None

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    @property
    def natural_key(self) -> str | None:
        value = self.values.get(NATURAL_KEYS[self.entity_type])
        if value is None:
            return None
        return value.strip() or None


@dataclass(frozen=True)
class ErrorRecord:
    entity_type: EntityType
    run_id: int | None
    natural_key: str | None
    source_file_name: str | None
    source_row_number: int | None
    raw_values: dict[str, str | None]
    error_code: str
    error_column: str
    error_description: str


@dataclass(frozen=True)
class DonorRecord:
    unos_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    blood_type: str
    organ_type: str
    referral_date: date
    opo_code: str
    donor_type: str
    status: str
    cause_of_death: str | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class RecipientRecord:
    unos_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    blood_type: str
    needed_organ: str
    listing_date: date
    opo_code: str
    status: str
    urgency_code: str
    diagnosis: str | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    pra_percent: float | None = None


@dataclass(frozen=True)
class CenterRecord:
    opo_code: str
    opo_name: str
    city: str
    state: str
    region: int
    center_type: str
    cms_certification: str | None = None
    accreditation_date: date | None = None
    phone: str | None = None
    email: str | None = None


TypedRecord = DonorRecord | RecipientRecord | CenterRecord


@dataclass(frozen=True)
class Valid:
    record: TypedRecord


@dataclass(frozen=True)
class Invalid:
    error: ErrorRecord


ValidationResult = Valid | Invalid


@dataclass(frozen=True)
class LoadResult:
    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


@dataclass(frozen=True)
class RunMetrics:
    source_row_count: int | None = None
    staged_row_count: int | None = None
    inserted_row_count: int | None = None
    updated_row_count: int | None = None
    error_row_count: int | None = None


@dataclass(frozen=True)
class PipelineResult:
    run_id: int
    entity_type: EntityType
    package_name: str
    source_file_name: str | None
    status: str
    source_row_count: int
    staged_row_count: int
    inserted_row_count: int
    updated_row_count: int
    error_row_count: int
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    steps: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in ("Success", "Warning")
