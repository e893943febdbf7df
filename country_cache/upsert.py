import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import PersistenceFailure
from .schemas import CountryRecord


logger = logging.getLogger(__name__)

FIELDS = (
    "name", "capital", "region", "population", "currency_code",
    "exchange_rate", "estimated_gdp", "flag_url", "last_refreshed_at",
)


def _batches(records: Sequence[CountryRecord], size: int):
    for start in range(0, len(records), size):
        yield records[start:start + size]


def _apply_batch(db: Session, batch: Sequence[CountryRecord]) -> tuple[int, int]:
    keys = [models.name_key(r.name) for r in batch]
    existing = {
        row.name_key: row
        for row in db.scalars(select(models.Countries).where(models.Countries.name_key.in_(keys)))
    }

    inserted = updated = 0
    for record in batch:
        data = record.model_dump(include=set(FIELDS))
        row = existing.get(models.name_key(record.name))
        if row is None:
            db.add(models.Countries(**data))
            inserted += 1
        else:
            # the stored name takes the casing of the latest fetch
            for field, value in data.items():
                setattr(row, field, value)
            updated += 1
    db.flush()
    return inserted, updated


def upsert_countries(db: Session, records: Sequence[CountryRecord], batch_size: int = 50) -> int:
    """Insert or overwrite every record, matching on case-insensitive name.

    Batches are flushed one at a time and nothing is committed here: the
    refresh commits once, together with its metadata, so a store error
    leaves none of this refresh's writes behind.
    """
    inserted = updated = 0
    try:
        for number, batch in enumerate(_batches(records, batch_size), start=1):
            batch_inserted, batch_updated = _apply_batch(db, batch)
            inserted += batch_inserted
            updated += batch_updated
            logger.debug("Applied batch %d (%d records)", number, len(batch))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Upsert failed after %d inserts / %d updates, rolled back: %s", inserted, updated, e)
        raise PersistenceFailure(str(e)) from e

    logger.info("Upserted %d countries (%d new, %d updated)", inserted + updated, inserted, updated)
    return inserted + updated
