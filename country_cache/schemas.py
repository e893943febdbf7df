from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back without tzinfo, they are always stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SourceCurrency(BaseModel):
    code: str | None = None


class SourceCountry(BaseModel):
    """One entry of the country reference payload."""

    name: str
    capital: str | None = None
    region: str | None = None
    population: int = 0
    flag: str | None = None
    currencies: list[SourceCurrency] = []

    @field_validator("capital", mode="before")
    @classmethod
    def first_capital(cls, value):
        if isinstance(value, list):
            return value[0] if value else None
        return value

    @field_validator("population", mode="before")
    @classmethod
    def coerce_population(cls, value):
        if isinstance(value, bool):
            return 0
        try:
            population = int(value)
        except (TypeError, ValueError):
            return 0
        return max(population, 0)

    @field_validator("currencies", mode="before")
    @classmethod
    def empty_currencies(cls, value):
        return value or []


class CountryRecord(BaseModel):
    name: str
    capital: str | None = None
    region: str | None = None
    population: int = 0
    currency_code: str | None = None
    exchange_rate: float | None = None
    estimated_gdp: float | None = None
    flag_url: str | None = None
    last_refreshed_at: datetime


class Country(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    capital: str | None = None
    region: str | None = None
    population: int
    currency_code: str | None = None
    exchange_rate: float | None = None
    estimated_gdp: float | None = None
    flag_url: str | None = None
    last_refreshed_at: datetime | None = None

    @field_validator("last_refreshed_at")
    @classmethod
    def utc_timestamp(cls, value):
        return as_utc(value)


class SummaryEntry(BaseModel):
    name: str
    estimated_gdp: float


class RefreshResult(BaseModel):
    message: str = "Countries data refreshed successfully"
    total_countries: int
    last_refreshed_at: datetime


class Status(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_countries: int = 0
    last_refreshed_at: datetime | None = None

    @field_validator("last_refreshed_at")
    @classmethod
    def utc_timestamp(cls, value):
        return as_utc(value)
