"""Static lookup data consulted by validation and load.

The facility dimension lives in the production ``transplant_centers`` table;
only active rows are visible through the reference store.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from organ_etl.db_models import BloodType, OrganType, StatusCode, TransplantCenter
from organ_etl.errors import ReferenceStoreError


logger = logging.getLogger(__name__)

BLOOD_TYPES = (
    ("O+", "O Positive", "O", "+"),
    ("O-", "O Negative", "O", "-"),
    ("A+", "A Positive", "A", "+"),
    ("A-", "A Negative", "A", "-"),
    ("B+", "B Positive", "B", "+"),
    ("B-", "B Negative", "B", "-"),
    ("AB+", "AB Positive", "AB", "+"),
    ("AB-", "AB Negative", "AB", "-"),
)

ORGAN_TYPES = (
    ("Kidney", "Kidney", "Solid Organ"),
    ("Liver", "Liver", "Solid Organ"),
    ("Heart", "Heart", "Solid Organ"),
    ("Lung", "Lung", "Solid Organ"),
    ("Pancreas", "Pancreas", "Solid Organ"),
    ("Intestine", "Intestine", "Solid Organ"),
    ("Heart-Lung", "Heart-Lung", "Combined"),
    ("Kidney-Pancreas", "Kidney-Pancreas", "Combined"),
)

DONOR_STATUS = "donor_status"
WAITLIST_STATUS = "waitlist_status"
URGENCY = "urgency"
DONOR_TYPE = "donor_type"

STATUS_CODES = (
    (DONOR_STATUS, "Active", "Active Donor", "Active"),
    (DONOR_STATUS, "Inactive", "Inactive Donor", "Inactive"),
    (DONOR_STATUS, "Pending", "Pending Evaluation", "Pending"),
    (WAITLIST_STATUS, "1", "Active - Status 1", "Active"),
    (WAITLIST_STATUS, "1A", "Status 1A - Highest Urgency", "Active"),
    (WAITLIST_STATUS, "1B", "Status 1B - High Urgency", "Active"),
    (WAITLIST_STATUS, "2", "Status 2 - Moderate Urgency", "Active"),
    (WAITLIST_STATUS, "3", "Status 3 - Standard", "Active"),
    (WAITLIST_STATUS, "7", "Inactive - Temporarily Unsuitable", "Inactive"),
    (URGENCY, "1A", "Highest Urgency", "High"),
    (URGENCY, "1B", "High Urgency", "High"),
    (URGENCY, "2", "Moderate Urgency", "Standard"),
    (URGENCY, "3", "Standard", "Standard"),
    (DONOR_TYPE, "DBD", "Donation after Brain Death", "Deceased"),
    (DONOR_TYPE, "DCD", "Donation after Circulatory Death", "Deceased"),
)


def seed_reference_data(db: Session) -> None:
    existing_blood = set(db.execute(select(BloodType.code)).scalars().all())
    for code, name, abo_group, rh_factor in BLOOD_TYPES:
        if code not in existing_blood:
            db.add(BloodType(code=code, name=name, abo_group=abo_group, rh_factor=rh_factor, is_active=True))

    existing_organs = set(db.execute(select(OrganType.code)).scalars().all())
    for code, name, category in ORGAN_TYPES:
        if code not in existing_organs:
            db.add(OrganType(code=code, name=name, category=category, is_active=True))

    existing_codes = {tuple(row) for row in db.execute(select(StatusCode.code_set, StatusCode.code))}
    for code_set, code, name, category in STATUS_CODES:
        if (code_set, code) not in existing_codes:
            db.add(StatusCode(code_set=code_set, code=code, name=name, category=category, is_active=True))

    db.commit()


@dataclass(frozen=True)
class ReferenceSnapshot:
    as_of: date
    blood_types: frozenset[str]
    organ_types: frozenset[str]
    code_sets: dict[str, frozenset[str]]
    facility_codes: frozenset[str]

    def codes(self, code_set: str) -> frozenset[str]:
        return self.code_sets.get(code_set, frozenset())


class ReferenceStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def snapshot(self, as_of: date) -> ReferenceSnapshot:
        try:
            blood_types = self.db.execute(select(BloodType.code).where(BloodType.is_active.is_(True))).scalars().all()
            organ_types = self.db.execute(select(OrganType.code).where(OrganType.is_active.is_(True))).scalars().all()
            status_rows = self.db.execute(
                select(StatusCode.code_set, StatusCode.code).where(StatusCode.is_active.is_(True))
            ).all()
            facility_codes = self.db.execute(
                select(TransplantCenter.opo_code).where(TransplantCenter.is_active.is_(True))
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise ReferenceStoreError(f"reference store unavailable: {exc}") from exc

        code_sets: dict[str, set[str]] = {}
        for code_set, code in status_rows:
            code_sets.setdefault(code_set, set()).add(code)

        return ReferenceSnapshot(
            as_of=as_of,
            blood_types=frozenset(blood_types),
            organ_types=frozenset(organ_types),
            code_sets={name: frozenset(codes) for name, codes in code_sets.items()},
            facility_codes=frozenset(facility_codes),
        )

    def resolve_facilities(self, codes: Iterable[str]) -> dict[str, int]:
        wanted = sorted(set(codes))
        if not wanted:
            return {}
        try:
            rows = self.db.execute(
                select(TransplantCenter.opo_code, TransplantCenter.id).where(
                    TransplantCenter.opo_code.in_(wanted),
                    TransplantCenter.is_active.is_(True),
                )
            ).all()
        except SQLAlchemyError as exc:
            raise ReferenceStoreError(f"reference store unavailable: {exc}") from exc

        resolved = dict(rows)
        logger.debug("resolved facility codes", extra={"requested": len(wanted), "resolved": len(resolved)})
        return resolved
