"""Check that the service can reach its database and both upstream sources.

Run with ``python -m country_cache.diagnose``. Nothing is written.
"""
import sys

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .database import build_engine
from .errors import SourceUnavailable
from .sources import Sources


def masked_url(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


def check_database(url: str) -> tuple[bool, str]:
    engine = build_engine(url)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return False, f"database unreachable: {e}"
    finally:
        engine.dispose()
    return True, "database connected"


def check_sources(sources: Sources) -> list[tuple[bool, str]]:
    results = []
    try:
        countries = sources.fetch_countries()
        results.append((True, f"Countries API - {len(countries)} countries fetched"))
    except SourceUnavailable as e:
        results.append((False, str(e)))
    try:
        rates = sources.fetch_rates()
        results.append((True, f"Exchange rates API - {len(rates)} currencies fetched"))
    except SourceUnavailable as e:
        results.append((False, str(e)))
    return results


def main(sources: Sources | None = None, out=sys.stdout) -> int:
    settings = get_settings()
    print(f"database:        {masked_url(settings.database_url)}", file=out)
    print(f"countries api:   {settings.countries_api_url}", file=out)
    print(f"exchange api:    {settings.exchange_api_url}", file=out)
    print(f"fetch timeout:   {settings.fetch_timeout:g}s", file=out)
    print(f"summary image:   {settings.summary_image_path}", file=out)

    own_sources = sources is None
    sources = sources or Sources.from_settings(settings)
    try:
        results = [check_database(settings.database_url)] + check_sources(sources)
    finally:
        if own_sources:
            sources.close()

    for ok, message in results:
        print(f"[{'ok' if ok else 'FAIL'}] {message}", file=out)
    return 0 if all(ok for ok, _ in results) else 1


if __name__ == "__main__":
    sys.exit(main())
