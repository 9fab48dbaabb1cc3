import csv
from pathlib import Path
import re

from organ_etl.schemas import ENTITY_FIELDS, EntityType, RawRecord


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_header(header: str) -> str:
    """``OPO_Code`` -> ``opo_code``, ``DateOfBirth`` -> ``date_of_birth``."""
    snake = _CAMEL_BOUNDARY.sub("_", header.strip())
    snake = re.sub(r"[\s\-]+", "_", snake).lower()
    return re.sub(r"_+", "_", snake).strip("_")


def read_delimited(path: Path, entity_type: EntityType, *, delimiter: str = ",") -> list[RawRecord]:
    if not path.exists():
        raise FileNotFoundError(f"input file not found: {path}")

    entity_type = EntityType(entity_type)
    fields = ENTITY_FIELDS[entity_type]
    records: list[RawRecord] = []
    with path.open("r", encoding="utf-8-sig", newline="") as infile:
        reader = csv.reader(infile, delimiter=delimiter)
        header = next(reader, None)
        if header is None:
            return records
        columns = [normalize_header(name) for name in header]

        for row_number, row in enumerate(reader, start=1):
            if not any(cell.strip() for cell in row):
                continue
            raw = dict(zip(columns, row))
            values = {name: (raw.get(name) or None) for name in fields}
            records.append(
                RawRecord(
                    entity_type=entity_type,
                    values=values,
                    source_file_name=path.name,
                    source_row_number=row_number,
                )
            )
    return records
