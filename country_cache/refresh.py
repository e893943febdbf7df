import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import PersistenceFailure, SourceUnavailable
from .reconciler import Multiplier, reconcile, uniform_multiplier
from .schemas import SummaryEntry
from .sources import Sources
from .summary import render_summary_safely, top_countries
from .tracker import update_refresh_meta
from .upsert import upsert_countries


logger = logging.getLogger(__name__)

# one refresh at a time per process, a second caller waits for the first
_refresh_lock = threading.Lock()


@dataclass
class RefreshOutcome:
    total_countries: int
    last_refreshed_at: datetime
    top: list[SummaryEntry] | None = field(default_factory=list)

    def render(self, path: str):
        """Best-effort summary image for this refresh; never raises."""
        if self.top is None:
            return None
        return render_summary_safely(path, self.total_countries, self.top, self.last_refreshed_at)


def refresh_countries(db: Session, sources: Sources, multiplier: Multiplier = uniform_multiplier,
                      batch_size: int = 50, now=None) -> RefreshOutcome:
    """Fetch both sources, reconcile, persist, and record the refresh.

    Raises SourceUnavailable before anything is written if either fetch
    fails, and PersistenceFailure if the store rejects the writes. The
    summary image is left to the caller through ``RefreshOutcome.render``.
    """
    with _refresh_lock:
        refreshed_at = now or datetime.now(timezone.utc)
        logger.info("Refresh started at %s", refreshed_at.isoformat())

        try:
            countries, rates = sources.fetch_all()
        except SourceUnavailable as e:
            logger.error("Refresh aborted, %s", e)
            raise

        records = reconcile(countries, rates, refreshed_at, multiplier)

        try:
            upsert_countries(db, records, batch_size=batch_size)
            meta = update_refresh_meta(db, refreshed_at)
            total = meta.total_countries
        except PersistenceFailure:
            logger.error("Refresh aborted while persisting")
            raise

        try:
            top = top_countries(db)
        except SQLAlchemyError:
            logger.exception("Could not rank countries for the summary image")
            top = None

    logger.info("Refresh finished: %d countries stored", total)
    return RefreshOutcome(total_countries=total, last_refreshed_at=refreshed_at, top=top)
