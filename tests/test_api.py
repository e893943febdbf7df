import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from country_cache import models, summary
from country_cache.database import SessionLocal, get_db
from country_cache.main import app, get_multiplier
from country_cache.reconciler import seeded_multiplier


def refresh(client):
    return client.post("/countries/refresh")


def test_refresh_scenario(client, db):
    resp = refresh(client)

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_countries"] == 1
    assert body["last_refreshed_at"]

    for name in ("testland", "TESTLAND", "Testland"):
        country = client.get(f"/countries/{name}")
        assert country.status_code == 200
        data = country.json()
        assert data["name"] == "Testland"
        assert data["estimated_gdp"] == 150000000
        assert data["exchange_rate"] == 10
        assert data["currency_code"] == "TST"
        assert data["flag_url"] == "http://x/flag.svg"

    status = client.get("/status").json()
    assert status["total_countries"] == 1
    assert status["last_refreshed_at"] is not None


def test_refresh_without_currency(client, upstream):
    upstream.countries[0]["currencies"] = []

    assert refresh(client).status_code == 200

    data = client.get("/countries/testland").json()
    assert data["estimated_gdp"] == 0
    assert data["exchange_rate"] is None
    assert data["currency_code"] is None


def test_refresh_with_unknown_currency(client, upstream):
    upstream.countries[0]["currencies"] = [{"code": "ZZZ"}]

    assert refresh(client).status_code == 200

    data = client.get("/countries/testland").json()
    assert data["currency_code"] == "ZZZ"
    assert data["estimated_gdp"] is None
    assert data["exchange_rate"] is None


def test_unknown_currency_clears_a_previous_estimate(client, upstream):
    refresh(client)
    upstream.rates = {}

    refresh(client)

    data = client.get("/countries/testland").json()
    assert data["estimated_gdp"] is None
    assert data["exchange_rate"] is None


@pytest.mark.parametrize("failing,details", [
    ("countries", "Could not fetch data from Countries API"),
    ("exchange_rates", "Could not fetch data from Exchange rates API"),
])
def test_source_failure_leaves_store_untouched(client, upstream, failing, details):
    refresh(client)
    before = client.get("/countries").json()
    status_before = client.get("/status").json()

    upstream.countries.append({"name": "Newland", "population": 5, "currencies": []})
    upstream.failing.add(failing)
    resp = refresh(client)

    assert resp.status_code == 503
    assert resp.json() == {
        "error": "External data source unavailable",
        "details": details,
        "source": failing,
    }
    assert client.get("/countries").json() == before
    assert client.get("/status").json() == status_before


def test_refresh_twice_keeps_identity_fields(client, upstream):
    upstream.countries.append({
        "name": "Otherland", "capital": "Oth", "region": "Elsewhere", "population": 42,
        "flag": "http://x/other.svg", "currencies": [{"code": "TST"}],
    })
    fields = ("name", "capital", "region", "population", "currency_code", "flag_url")

    app.dependency_overrides[get_multiplier] = lambda: seeded_multiplier(3)
    refresh(client)
    first = [{f: c[f] for f in fields} for c in client.get("/countries").json()]
    refresh(client)
    second = [{f: c[f] for f in fields} for c in client.get("/countries").json()]

    assert first == second
    assert len(second) == 2


def test_refresh_matches_existing_name_case_insensitively(client, upstream):
    upstream.countries[0]["name"] = "TESTLAND"
    refresh(client)
    upstream.countries[0]["name"] = "Testland"
    refresh(client)

    names = [c["name"] for c in client.get("/countries").json()]
    assert names == ["Testland"]


def test_metadata_tracks_row_count(client, upstream, db):
    db.add(models.Countries(name="Legacy", population=1))
    db.commit()
    upstream.countries.append({"name": "Otherland", "population": 1, "currencies": []})

    assert refresh(client).json()["total_countries"] == 3

    assert client.delete("/countries/legacy").status_code == 200
    assert client.get("/status").json()["total_countries"] == 2
    assert len(client.get("/countries").json()) == 2


def test_persistence_failure_is_internal_error(client):
    def broken_db():
        session = SessionLocal()

        def fail(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("lost connection"))

        session.flush = fail
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = broken_db
    resp = refresh(client)

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}

    del app.dependency_overrides[get_db]
    assert client.get("/countries").json() == []
    assert client.get("/status").json() == {"total_countries": 0, "last_refreshed_at": None}


def test_refresh_renders_summary_image(client, cache_dir):
    assert client.get("/countries/image").status_code == 404

    refresh(client)

    resp = client.get("/countries/image")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content.startswith(b"\x89PNG")
    assert (cache_dir / "summary.png").exists()


def test_render_failure_does_not_fail_refresh(client, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("font missing")

    monkeypatch.setattr(summary, "build_figure", broken)

    resp = refresh(client)

    assert resp.status_code == 200
    assert resp.json()["total_countries"] == 1
    assert client.get("/countries/image").json() == {"error": "Summary image not found"}


@pytest.fixture()
def world(client, upstream):
    upstream.countries = [
        {"name": "Nigeria", "region": "Africa", "population": 200, "currencies": [{"code": "NGN"}]},
        {"name": "Ghana", "region": "Africa", "population": 30, "currencies": [{"code": "GHS"}]},
        {"name": "France", "region": "Europe", "population": 60, "currencies": [{"code": "EUR"}]},
        {"name": "Atlantis", "region": "Europe", "population": 10, "currencies": [{"code": "ZZZ"}]},
        {"name": "Antarctica", "region": "Polar", "population": 0, "currencies": []},
    ]
    upstream.rates = {"NGN": 1500, "GHS": 12, "EUR": 0.9}
    refresh(client)
    return client


def names(resp):
    return [c["name"] for c in resp.json()]


def test_list_defaults_to_name_order(world):
    assert names(world.get("/countries")) == ["Antarctica", "Atlantis", "France", "Ghana", "Nigeria"]


def test_list_filters_region_and_currency_ignoring_case(world):
    assert names(world.get("/countries", params={"region": "africa"})) == ["Ghana", "Nigeria"]
    assert names(world.get("/countries", params={"currency": "eur"})) == ["France"]
    assert names(world.get("/countries", params={"region": "AFRICA", "currency": "NGN"})) == ["Nigeria"]


def test_list_sorts_by_gdp_with_unknown_last(world):
    desc = world.get("/countries", params={"sort": "gdp_desc"}).json()
    asc = world.get("/countries", params={"sort": "gdp_asc"}).json()

    assert [c["name"] for c in desc] == ["France", "Ghana", "Nigeria", "Antarctica", "Atlantis"]
    assert [c["name"] for c in asc] == ["Antarctica", "Nigeria", "Ghana", "France", "Atlantis"]
    assert desc[-1]["estimated_gdp"] is None


def test_list_sorts_by_population(world):
    assert names(world.get("/countries", params={"sort": "population_desc"}))[0] == "Nigeria"
    assert names(world.get("/countries", params={"sort": "population_asc"}))[0] == "Antarctica"
    assert names(world.get("/countries", params={"sort": "name_desc"}))[0] == "Nigeria"


def test_list_rejects_unknown_sort(world):
    resp = world.get("/countries", params={"sort": "capital_asc"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation failed"
    assert "sort" in resp.json()["details"]


def test_missing_country(client):
    assert client.get("/countries/nowhere").json() == {"error": "Country not found"}
    resp = client.delete("/countries/nowhere")
    assert resp.status_code == 404


def test_delete_is_case_insensitive(world, db):
    assert world.delete("/countries/gHaNa").json() == {"message": "Country deleted successfully"}
    assert world.get("/countries/ghana").status_code == 404
    assert db.scalars(select(models.Countries).where(models.Countries.name == "Ghana")).first() is None


def test_status_before_any_refresh(client):
    assert client.get("/status").json() == {"total_countries": 0, "last_refreshed_at": None}


def test_home(client):
    assert client.get("/").json()["status"] == "running"


def test_non_ascii_name_survives_repeat_refresh(client, upstream):
    upstream.countries.append({
        "name": "Åland Islands", "capital": "Mariehamn", "region": "Europe",
        "population": 28875, "currencies": [{"code": "EUR"}],
    })
    upstream.rates = {"TST": 10, "EUR": 0.9}

    assert refresh(client).status_code == 200
    resp = refresh(client)

    assert resp.status_code == 200
    assert resp.json()["total_countries"] == 2

    for name in ("Åland Islands", "åland islands", "ÅLAND ISLANDS"):
        found = client.get(f"/countries/{name}")
        assert found.status_code == 200
        assert found.json()["name"] == "Åland Islands"

    assert client.delete("/countries/åland islands").status_code == 200
    assert client.get("/countries/Åland Islands").status_code == 404
    assert client.get("/status").json()["total_countries"] == 1
