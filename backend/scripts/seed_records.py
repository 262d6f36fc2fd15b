from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError
from sqlalchemy import select

from dashboard.db.models import StoredRecordModel
from dashboard.db.session import init_database, session_scope
from dashboard.records.base import Record
from dashboard.records.database import new_record_id


logger = logging.getLogger("seed")

DEFAULT_FIXTURE = Path(__file__).resolve().parent / "fixtures" / "sample_records.json"


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must contain an object keyed by table name")
    return payload


def seed_records(payload: Mapping[str, List[Dict[str, Any]]], *, replace: bool = False) -> int:
    """Upsert ``{table: [{"id": ..., "fields": {...}}, ...]}`` into the local mirror."""
    imported = 0
    with session_scope() as session:
        for table, entries in payload.items():
            if not isinstance(entries, list):
                logger.warning("Skipping table %s; expected a list of records", table)
                continue
            for entry in entries:
                try:
                    record = Record.model_validate({"id": new_record_id(), **entry})
                except ValidationError as exc:
                    logger.warning("Skipping invalid record in %s: %s", table, exc)
                    continue
                existing = session.execute(
                    select(StoredRecordModel).where(
                        StoredRecordModel.table_name == table,
                        StoredRecordModel.record_id == record.id,
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    if replace:
                        existing.fields = dict(record.fields)
                        imported += 1
                    continue
                session.add(StoredRecordModel(table_name=table, record_id=record.id, fields=dict(record.fields)))
                imported += 1
    logger.info("Seeded %d records", imported)
    return imported


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load a JSON fixture of records into the local record mirror.")
    parser.add_argument("--fixture", type=Path, default=DEFAULT_FIXTURE)
    parser.add_argument("--replace", action="store_true", help="Overwrite fields of records that already exist.")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args()
    init_database()
    total = seed_records(_load_json(args.fixture), replace=args.replace)
    logger.info("Seeding completed: %d records from %s", total, args.fixture)


if __name__ == "__main__":
    main()
