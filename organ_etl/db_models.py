from datetime import UTC, date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


RUN_STATUSES = ("Running", "Success", "Failed", "Warning")


# Audit ledger


class LoadRun(Base):
    __tablename__ = "load_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('Running', 'Success', 'Failed', 'Warning')",
            name="ck_load_runs_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_name: Mapped[str] = mapped_column(String(255), index=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="Running", index=True)
    source_row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    staged_row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inserted_row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_row_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    executed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    host_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    steps: Mapped[list["LoadRunStep"]] = relationship(back_populates="run", order_by="LoadRunStep.id")


class LoadRunStep(Base):
    __tablename__ = "load_run_steps"
    __table_args__ = (UniqueConstraint("run_id", "step_name", name="uq_run_step"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("load_runs.id"), index=True)
    step_name: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(32), default="started")
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    run: Mapped[LoadRun] = relationship(back_populates="steps")


# Staging area and error sink. Raw values stay untyped strings.


class StagedRecord(Base):
    __tablename__ = "staged_records"
    __table_args__ = (
        UniqueConstraint("entity_type", "run_id", "source_row_number", name="uq_staged_row"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), index=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("load_runs.id"), index=True)
    source_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_row_number: Mapped[int] = mapped_column(Integer)
    natural_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_values: Mapped[dict[str, str | None]] = mapped_column(JSON)
    staged_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ErrorRecordRow(Base):
    __tablename__ = "error_records"
    __table_args__ = (
        UniqueConstraint("entity_type", "run_id", "source_row_number", name="uq_error_per_row"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), index=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("load_runs.id"), index=True)
    source_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_row_number: Mapped[int] = mapped_column(Integer)
    natural_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_values: Mapped[dict[str, str | None]] = mapped_column(JSON)
    error_code: Mapped[str] = mapped_column(String(20), index=True)
    error_column: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_description: Mapped[str] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


# Reference store


class BloodType(Base):
    __tablename__ = "blood_types"

    code: Mapped[str] = mapped_column(String(5), primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    abo_group: Mapped[str] = mapped_column(String(2))
    rh_factor: Mapped[str] = mapped_column(String(1))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class OrganType(Base):
    __tablename__ = "organ_types"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    category: Mapped[str] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class StatusCode(Base):
    __tablename__ = "status_codes"

    code_set: Mapped[str] = mapped_column(String(32), primary_key=True)
    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    category: Mapped[str] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# Production store


class TransplantCenter(Base):
    __tablename__ = "transplant_centers"
    __table_args__ = (CheckConstraint("region BETWEEN 1 AND 11", name="ck_centers_region"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opo_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    opo_name: Mapped[str] = mapped_column(String(200))
    city: Mapped[str] = mapped_column(String(100))
    state: Mapped[str] = mapped_column(String(2), index=True)
    region: Mapped[int] = mapped_column(Integer)
    center_type: Mapped[str] = mapped_column(String(100))
    cms_certification: Mapped[str | None] = mapped_column(String(50), nullable=True)
    accreditation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    modified_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    load_run_id: Mapped[int | None] = mapped_column(ForeignKey("load_runs.id"), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, default=1)


class Donor(Base):
    __tablename__ = "donors"
    __table_args__ = (
        CheckConstraint("donor_type IN ('DBD', 'DCD')", name="ck_donors_donor_type"),
        CheckConstraint("age IS NULL OR (age >= 0 AND age <= 120)", name="ck_donors_age"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unos_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    date_of_birth: Mapped[date] = mapped_column(Date)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    blood_type: Mapped[str] = mapped_column(ForeignKey("blood_types.code"), index=True)
    organ_type: Mapped[str] = mapped_column(ForeignKey("organ_types.code"), index=True)
    referral_date: Mapped[date] = mapped_column(Date, index=True)
    center_id: Mapped[int] = mapped_column(ForeignKey("transplant_centers.id"), index=True)
    donor_type: Mapped[str] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(20), index=True)
    cause_of_death: Mapped[str | None] = mapped_column(String(200), nullable=True)
    height_cm: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    bmi: Mapped[float | None] = mapped_column(Float, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    modified_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    load_run_id: Mapped[int | None] = mapped_column(ForeignKey("load_runs.id"), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, default=1)

    center: Mapped[TransplantCenter] = relationship()


class Recipient(Base):
    __tablename__ = "recipients"
    __table_args__ = (
        CheckConstraint("age IS NULL OR (age >= 0 AND age <= 120)", name="ck_recipients_age"),
        CheckConstraint(
            "pra_percent IS NULL OR (pra_percent >= 0 AND pra_percent <= 100)",
            name="ck_recipients_pra",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unos_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    date_of_birth: Mapped[date] = mapped_column(Date)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    blood_type: Mapped[str] = mapped_column(ForeignKey("blood_types.code"), index=True)
    needed_organ: Mapped[str] = mapped_column(ForeignKey("organ_types.code"), index=True)
    listing_date: Mapped[date] = mapped_column(Date, index=True)
    days_on_waitlist: Mapped[int | None] = mapped_column(Integer, nullable=True)
    center_id: Mapped[int] = mapped_column(ForeignKey("transplant_centers.id"), index=True)
    status: Mapped[str] = mapped_column(String(20))
    urgency_code: Mapped[str] = mapped_column(String(10), index=True)
    diagnosis: Mapped[str | None] = mapped_column(String(200), nullable=True)
    height_cm: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    bmi: Mapped[float | None] = mapped_column(Float, nullable=True)
    pra_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    modified_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    load_run_id: Mapped[int | None] = mapped_column(ForeignKey("load_runs.id"), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, default=1)

    center: Mapped[TransplantCenter] = relationship()
