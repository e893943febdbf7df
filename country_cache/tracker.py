import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import PersistenceFailure


logger = logging.getLogger(__name__)

META_ID = 1


def count_countries(db: Session) -> int:
    return db.scalar(select(func.count()).select_from(models.Countries))


def get_refresh_meta(db: Session) -> models.RefreshMeta | None:
    return db.get(models.RefreshMeta, META_ID)


def update_refresh_meta(db: Session, refreshed_at: datetime) -> models.RefreshMeta:
    """Store the current row count and refresh time on the singleton row.

    Commits the session, which also commits the records flushed by the
    upsert; on failure both are rolled back.
    """
    try:
        total = count_countries(db)
        meta = get_refresh_meta(db)
        if meta is None:
            meta = models.RefreshMeta(id=META_ID)
            db.add(meta)
        meta.total_countries = total
        meta.last_refreshed_at = refreshed_at
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not update refresh metadata: %s", e)
        raise PersistenceFailure(str(e)) from e

    logger.info("Refresh metadata: %d countries as of %s", total, refreshed_at.isoformat())
    return meta


def recount(db: Session):
    """Bring total_countries back in line after a delete, if a refresh ever ran."""
    meta = get_refresh_meta(db)
    if meta is not None:
        meta.total_countries = count_countries(db)
        db.commit()
