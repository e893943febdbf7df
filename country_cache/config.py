import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from .errors import ConfigurationError


load_dotenv()

COUNTRIES_API = "https://restcountries.com/v2/all?fields=name,capital,region,population,flag,currencies"
EXCHANGE_API = "https://open.er-api.com/v6/latest/USD"

MIN_FETCH_TIMEOUT = 10.0
MAX_FETCH_TIMEOUT = 30.0


@dataclass(frozen=True)
class Settings:
    database_url: str
    countries_api_url: str = COUNTRIES_API
    exchange_api_url: str = EXCHANGE_API
    fetch_timeout: float = 15.0
    upsert_batch_size: int = 50
    cache_dir: str = "cache"
    log_level: str = "INFO"

    @property
    def summary_image_path(self) -> str:
        return os.path.join(self.cache_dir, "summary.png")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("MYSQL_HOST")
    if host:
        username = os.getenv("MYSQL_USERNAME", "root")
        password = os.getenv("MYSQL_PASSWORD", "")
        port = os.getenv("MYSQL_PORT", "3306")
        database = os.getenv("MYSQL_DATABASE", "countries")
        return f"mysql+pymysql://{username}:{password}@{host}:{port}/{database}"

    return "sqlite:///./countries.db"


def _number(key: str, default, cast):
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


def load_settings() -> Settings:
    timeout = _number("FETCH_TIMEOUT", 15.0, float)
    timeout = min(max(timeout, MIN_FETCH_TIMEOUT), MAX_FETCH_TIMEOUT)

    batch_size = _number("UPSERT_BATCH_SIZE", 50, int)
    if batch_size < 1:
        raise ConfigurationError(f"UPSERT_BATCH_SIZE must be at least 1, got {batch_size}")

    return Settings(
        database_url=_database_url(),
        countries_api_url=os.getenv("COUNTRIES_API_URL", COUNTRIES_API),
        exchange_api_url=os.getenv("EXCHANGE_API_URL", EXCHANGE_API),
        fetch_timeout=timeout,
        upsert_batch_size=batch_size,
        cache_dir=os.getenv("CACHE_DIR", "cache"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
