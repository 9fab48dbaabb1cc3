from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from organ_etl.config import Settings
from organ_etl.database import build_session_factory
from organ_etl.pipeline import PipelineRunner
from organ_etl.schemas import EntityType, PipelineResult, RawRecord


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


CENTER_ROWS = [
    {
        "opo_code": "NYRT",
        "opo_name": "New York Regional Transplant Program",
        "city": "New York",
        "state": "NY",
        "region": "9",
        "center_type": "Comprehensive",
        "cms_certification": "NY0001",
        "accreditation_date": "2018-06-15",
        "phone": "212-555-0100",
        "email": "transplant@nyrt.org",
    },
    {
        "opo_code": "CAOP",
        "opo_name": "California Organ Procurement",
        "city": "Los Angeles",
        "state": "CA",
        "region": "5",
        "center_type": "Comprehensive",
        "cms_certification": "CA0001",
        "accreditation_date": "2017-03-22",
        "phone": "310-555-0200",
        "email": "ops@caop.org",
    },
    {
        "opo_code": "TXGC",
        "opo_name": "Texas Gulf Coast Transplant",
        "city": "Houston",
        "state": "TX",
        "region": "4",
        "center_type": "Comprehensive",
        "cms_certification": "TX0001",
        "accreditation_date": "2019-09-10",
        "phone": "713-555-0300",
        "email": "transplant@txgc.org",
    },
]


def donor_values(**overrides: str | None) -> dict[str, str | None]:
    values: dict[str, str | None] = {
        "unos_id": "ABJK-78234",
        "first_name": "Michael",
        "last_name": "Patterson",
        "date_of_birth": "1985-03-15",
        "blood_type": "O+",
        "organ_type": "Kidney",
        "referral_date": "2024-01-15",
        "opo_code": "NYRT",
        "donor_type": "DBD",
        "status": "Active",
        "cause_of_death": "CVA",
        "height_cm": "178",
        "weight_kg": "82",
        "contact_phone": "555-0101",
    }
    values.update(overrides)
    return values


def recipient_values(**overrides: str | None) -> dict[str, str | None]:
    values: dict[str, str | None] = {
        "unos_id": "RCPT-10001",
        "first_name": "Alice",
        "last_name": "Cooper",
        "date_of_birth": "1965-08-12",
        "blood_type": "O+",
        "needed_organ": "Kidney",
        "listing_date": "2023-06-15",
        "opo_code": "NYRT",
        "status": "1",
        "urgency_code": "1A",
        "diagnosis": "ESRD - Diabetes",
        "height_cm": "162",
        "weight_kg": "70",
        "pra_percent": "15",
    }
    values.update(overrides)
    return values


def center_values(**overrides: str | None) -> dict[str, str | None]:
    values: dict[str, str | None] = dict(CENTER_ROWS[0])
    values.update(overrides)
    return values


@pytest.fixture()
def make_records() -> Callable[..., list[RawRecord]]:
    def build(
        entity_type: EntityType,
        rows: list[dict[str, str | None]],
        source_file_name: str = "input.csv",
    ) -> list[RawRecord]:
        return [
            RawRecord(
                entity_type=entity_type,
                values=row,
                source_file_name=source_file_name,
                source_row_number=index,
            )
            for index, row in enumerate(rows, start=1)
        ]

    return build


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "input").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="organ_etl",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        input_dir=str(temp_workspace / "data" / "input"),
        centers_file="transplant_centers.csv",
        donors_file="donors.csv",
        recipients_file="recipients.csv",
        warning_error_rate=50.0,
        max_workers=2,
        max_run_retries=0,
        retry_backoff_seconds=0,
        stale_run_minutes=120,
        executed_by="pytest",
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, 0))


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def runner(test_settings: Settings, session_factory: sessionmaker[Session], clock: FakeClock) -> PipelineRunner:
    return PipelineRunner(test_settings, session_factory, clock=clock)


@pytest.fixture()
def loaded_centers(runner: PipelineRunner, make_records) -> PipelineResult:
    result = runner.run_entity(
        EntityType.CENTER,
        make_records(EntityType.CENTER, [dict(row) for row in CENTER_ROWS], "transplant_centers.csv"),
        source_file_name="transplant_centers.csv",
    )
    assert result.status == "Success"
    return result
