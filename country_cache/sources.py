import logging
import math
from concurrent.futures import ThreadPoolExecutor

import httpx
from pydantic import TypeAdapter, ValidationError

from .config import Settings
from .errors import SourceUnavailable
from .schemas import SourceCountry


logger = logging.getLogger(__name__)

COUNTRIES = "countries"
EXCHANGE_RATES = "exchange_rates"

_country_list = TypeAdapter(list[SourceCountry])


def _get_json(client: httpx.Client, url: str, timeout: float, source: str):
    try:
        resp = client.get(url, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPError as e:
        raise SourceUnavailable(source, f"{type(e).__name__}: {e}") from e
    except ValueError as e:
        raise SourceUnavailable(source, "response is not valid JSON") from e


def parse_rates(payload) -> dict[str, float]:
    """Pull the code -> rate table out of an exchange rate response.

    Entries that are not strictly positive numbers are dropped.
    """
    if not isinstance(payload, dict):
        raise SourceUnavailable(EXCHANGE_RATES, "unexpected payload shape")
    if payload.get("result", "success") != "success":
        raise SourceUnavailable(EXCHANGE_RATES, f"provider reported {payload.get('result')!r}")
    raw = payload.get("rates")
    if not isinstance(raw, dict):
        raise SourceUnavailable(EXCHANGE_RATES, "payload has no rates mapping")

    rates = {}
    for code, value in raw.items():
        if isinstance(value, bool):
            continue
        try:
            rate = float(value)
        except (TypeError, ValueError):
            continue
        if rate > 0 and math.isfinite(rate):
            rates[str(code).strip().upper()] = rate

    dropped = len(raw) - len(rates)
    if dropped:
        logger.warning("Dropped %d unusable exchange rates", dropped)
    return rates


class Sources:
    """The two upstream providers, sharing one HTTP client."""

    def __init__(self, countries_url: str, rates_url: str, timeout: float = 15.0,
                 client: httpx.Client | None = None):
        self.countries_url = countries_url
        self.rates_url = rates_url
        self.timeout = timeout
        self.client = client or httpx.Client()

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.Client | None = None) -> "Sources":
        return cls(settings.countries_api_url, settings.exchange_api_url, settings.fetch_timeout, client)

    def fetch_countries(self) -> list[SourceCountry]:
        payload = _get_json(self.client, self.countries_url, self.timeout, COUNTRIES)
        if not isinstance(payload, list):
            raise SourceUnavailable(COUNTRIES, "expected a list of countries")
        try:
            countries = _country_list.validate_python(payload)
        except ValidationError as e:
            raise SourceUnavailable(COUNTRIES, f"payload violates the country contract: {e.error_count()} errors") from e
        logger.info("Fetched %d countries", len(countries))
        return countries

    def fetch_rates(self) -> dict[str, float]:
        payload = _get_json(self.client, self.rates_url, self.timeout, EXCHANGE_RATES)
        rates = parse_rates(payload)
        logger.info("Fetched %d exchange rates", len(rates))
        return rates

    def fetch_all(self) -> tuple[list[SourceCountry], dict[str, float]]:
        """Fetch both sources concurrently; either failing aborts the refresh.

        When both fail, the countries failure is the one raised.
        """
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="source") as pool:
            countries = pool.submit(self.fetch_countries)
            rates = pool.submit(self.fetch_rates)
            return countries.result(), rates.result()

    def close(self):
        self.client.close()
