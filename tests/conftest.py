import os

# the engine is built when country_cache.database is first imported
os.environ["DATABASE_URL"] = "sqlite://"

from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from country_cache.config import get_settings
from country_cache.database import Base, SessionLocal, engine, init_db
from country_cache.main import app, get_multiplier, get_sources
from country_cache.reconciler import fixed_multiplier
from country_cache.sources import Sources


COUNTRIES_URL = "https://countries.test/v2/all"
RATES_URL = "https://rates.test/v6/latest/USD"

TESTLAND = {
    "name": "Testland",
    "capital": "Cap",
    "region": "TestRegion",
    "population": 1000000,
    "flag": "http://x/flag.svg",
    "currencies": [{"code": "TST"}],
}


class Upstream:
    """Canned responses for both providers, served through httpx.MockTransport."""

    def __init__(self):
        self.countries = [dict(TESTLAND)]
        self.rates = {"TST": 10}
        self.failing = set()
        self.calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        source = "countries" if request.url.host == "countries.test" else "exchange_rates"
        self.calls.append(source)
        if source in self.failing:
            raise httpx.ConnectError("connection refused", request=request)
        if source == "countries":
            return httpx.Response(200, json=self.countries)
        return httpx.Response(200, json={"result": "success", "base_code": "USD", "rates": self.rates})

    def sources(self) -> Sources:
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return Sources(COUNTRIES_URL, RATES_URL, timeout=10, client=client)


@pytest.fixture()
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture()
def db() -> Generator:
    Base.metadata.drop_all(bind=engine)
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def cache_dir(tmp_path, monkeypatch):
    path = tmp_path / "cache"
    monkeypatch.setenv("CACHE_DIR", str(path))
    get_settings.cache_clear()
    try:
        yield path
    finally:
        get_settings.cache_clear()


@pytest.fixture()
def client(db, cache_dir, upstream) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_sources] = upstream.sources
    app.dependency_overrides[get_multiplier] = lambda: fixed_multiplier(1500)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
