import logging
import random
from datetime import datetime
from typing import Callable, Iterable

from .schemas import CountryRecord, SourceCountry


logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 1000
MULTIPLIER_MAX = 2000

Multiplier = Callable[[], float]


def uniform_multiplier() -> float:
    return random.uniform(MULTIPLIER_MIN, MULTIPLIER_MAX)


def seeded_multiplier(seed) -> Multiplier:
    rng = random.Random(seed)
    return lambda: rng.uniform(MULTIPLIER_MIN, MULTIPLIER_MAX)


def fixed_multiplier(value: float) -> Multiplier:
    return lambda: value


def reconcile_country(country: SourceCountry, rates: dict[str, float], refreshed_at: datetime,
                      multiplier: Multiplier = uniform_multiplier) -> CountryRecord:
    currency_code = None
    exchange_rate = None
    estimated_gdp = None

    if not country.currencies:
        # no currency at all means zero, not unknown
        estimated_gdp = 0.0
    else:
        code = (country.currencies[0].code or "").strip().upper()
        currency_code = code or None
        if currency_code and currency_code in rates:
            exchange_rate = rates[currency_code]
            estimated_gdp = country.population * multiplier() / exchange_rate

    return CountryRecord(
        name=country.name,
        capital=country.capital,
        region=country.region,
        population=country.population,
        currency_code=currency_code,
        exchange_rate=exchange_rate,
        estimated_gdp=estimated_gdp,
        flag_url=country.flag,
        last_refreshed_at=refreshed_at,
    )


def reconcile(countries: Iterable[SourceCountry], rates: dict[str, float], refreshed_at: datetime,
              multiplier: Multiplier = uniform_multiplier) -> list[CountryRecord]:
    """Turn the fetched payloads into one record per country name.

    Names are compared case-insensitively; a later entry replaces an
    earlier one with the same name. Order of first appearance is kept.
    """
    records: dict[str, CountryRecord] = {}
    for country in countries:
        key = country.name.casefold()
        if key in records:
            logger.warning("Duplicate country %r in payload, keeping the last entry", country.name)
        records[key] = reconcile_country(country, rates, refreshed_at, multiplier)

    unresolved = sum(1 for r in records.values() if r.currency_code and r.exchange_rate is None)
    logger.info("Reconciled %d countries (%d without a known exchange rate)", len(records), unresolved)
    return list(records.values())
