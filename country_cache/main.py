import logging
import os
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .config import configure_logging, get_settings
from .database import get_db, init_db
from .errors import PersistenceFailure, RecordNotFound, SourceUnavailable
from .reconciler import uniform_multiplier
from .refresh import refresh_countries
from .schemas import Country, RefreshResult, Status
from .sources import Sources
from .tracker import get_refresh_meta, recount


logger = logging.getLogger(__name__)

SORTS = {
    "name_asc": (models.Countries.name.asc(),),
    "name_desc": (models.Countries.name.desc(),),
    "gdp_asc": (models.Countries.estimated_gdp.is_(None), models.Countries.estimated_gdp.asc()),
    "gdp_desc": (models.Countries.estimated_gdp.is_(None), models.Countries.estimated_gdp.desc()),
    "population_asc": (models.Countries.population.asc(),),
    "population_desc": (models.Countries.population.desc(),),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()
    logger.info("Country cache ready, summary image at %s", settings.summary_image_path)
    yield


app = FastAPI(title="Country Currency & Exchange API", lifespan=lifespan)


def get_sources():
    sources = Sources.from_settings(get_settings())
    try:
        yield sources
    finally:
        sources.close()


def get_multiplier():
    return uniform_multiplier


@app.exception_handler(SourceUnavailable)
async def source_unavailable(request: Request, exc: SourceUnavailable):
    return JSONResponse(
        status_code=503,
        content={
            "error": "External data source unavailable",
            "details": f"Could not fetch data from {exc.label}",
            "source": exc.source,
        },
    )


@app.exception_handler(PersistenceFailure)
async def persistence_failure(request: Request, exc: PersistenceFailure):
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(RecordNotFound)
async def record_not_found(request: Request, exc: RecordNotFound):
    return JSONResponse(status_code=404, content={"error": "Country not found"})


def validation_failed(details: dict):
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


def find_country(db: Session, name: str) -> models.Countries:
    country = db.query(models.Countries).filter(
        models.Countries.name_key == models.name_key(name)
    ).first()
    if country is None:
        raise RecordNotFound(name)
    return country


@app.get("/")
def home():
    return {"message": "Country Currency & Exchange API", "status": "running"}


@app.post("/countries/refresh", response_model=RefreshResult)
def refresh(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    sources: Sources = Depends(get_sources),
    multiplier=Depends(get_multiplier),
):
    settings = get_settings()
    outcome = refresh_countries(db, sources, multiplier, batch_size=settings.upsert_batch_size)
    # rendered after the response goes out, failures there are only logged
    background_tasks.add_task(outcome.render, settings.summary_image_path)
    return RefreshResult(
        total_countries=outcome.total_countries,
        last_refreshed_at=outcome.last_refreshed_at,
    )


@app.get("/countries", response_model=list[Country])
def get_countries(
    region: str | None = Query(None, description="Filter by region, e.g. Africa"),
    currency: str | None = Query(None, description="Filter by currency code, e.g. NGN"),
    sort: str = Query("name_asc", description="name_asc, name_desc, gdp_asc, gdp_desc, population_asc or population_desc"),
    db: Session = Depends(get_db),
):
    ordering = SORTS.get(sort.lower())
    if ordering is None:
        return validation_failed({"sort": f"must be one of {', '.join(SORTS)}"})

    query = db.query(models.Countries)
    if region:
        query = query.filter(func.lower(models.Countries.region) == region.lower())
    if currency:
        query = query.filter(func.upper(models.Countries.currency_code) == currency.upper())

    return query.order_by(*ordering, models.Countries.id.asc()).all()


@app.get("/countries/image")
def get_summary_image():
    image_path = get_settings().summary_image_path
    if not os.path.exists(image_path):
        return JSONResponse(status_code=404, content={"error": "Summary image not found"})
    return FileResponse(image_path, media_type="image/png")


@app.get("/countries/{name}", response_model=Country)
def get_country(name: str, db: Session = Depends(get_db)):
    return find_country(db, name)


@app.delete("/countries/{name}")
def delete_country(name: str, db: Session = Depends(get_db)):
    country = find_country(db, name)
    stored_name = country.name
    db.delete(country)
    db.commit()
    recount(db)
    logger.info("Deleted country %r", stored_name)
    return {"message": "Country deleted successfully"}


@app.get("/status", response_model=Status)
def get_status(db: Session = Depends(get_db)):
    meta = get_refresh_meta(db)
    if meta is None:
        return Status()
    return Status.model_validate(meta)
