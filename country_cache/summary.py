import logging
import os
import tempfile
from datetime import datetime

import matplotlib

matplotlib.use("Agg")

from matplotlib.figure import Figure
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .errors import RenderFailure
from .schemas import SummaryEntry, as_utc


logger = logging.getLogger(__name__)

WIDTH, HEIGHT = 800, 600
DPI = 100
TOP_N = 5

BACKGROUND = "#1a1a2e"
FOREGROUND = "white"
ACCENT = "#7fb3ff"


def top_countries(db: Session, limit: int = TOP_N) -> list[SummaryEntry]:
    """Highest estimated GDP first; rows without a GDP are not ranked.

    Equal values keep insertion order.
    """
    rows = db.execute(
        select(models.Countries.name, models.Countries.estimated_gdp)
        .where(models.Countries.estimated_gdp.is_not(None))
        .order_by(models.Countries.estimated_gdp.desc(), models.Countries.id.asc())
        .limit(limit)
    ).all()
    return [SummaryEntry(name=name, estimated_gdp=gdp) for name, gdp in rows]


def format_gdp(value: float) -> str:
    return f"${value:,.0f}"


def format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_figure(total_countries: int, top: list[SummaryEntry], refreshed_at: datetime) -> Figure:
    fig = Figure(figsize=(WIDTH / DPI, HEIGHT / DPI), dpi=DPI, facecolor=BACKGROUND)

    fig.text(0.5, 0.91, "Country Data Summary", ha="center", va="center",
             fontsize=26, fontweight="bold", color=FOREGROUND)
    fig.text(0.5, 0.82, f"Total Countries: {total_countries}", ha="center", va="center",
             fontsize=15, color=FOREGROUND)
    fig.text(0.5, 0.70, f"Top {TOP_N} Countries by Estimated GDP", ha="center", va="center",
             fontsize=19, fontweight="bold", color=ACCENT)

    if not top:
        fig.text(0.5, 0.55, "No GDP data available.", ha="center", va="center",
                 fontsize=14, color="gray")
    y = 0.60
    for rank, entry in enumerate(top, start=1):
        fig.text(0.12, y, f"{rank}. {entry.name}", ha="left", va="center",
                 fontsize=14, color=FOREGROUND)
        fig.text(0.88, y, format_gdp(entry.estimated_gdp), ha="right", va="center",
                 fontsize=14, color=FOREGROUND, family="monospace")
        y -= 0.08

    fig.text(0.5, 0.07, f"Last Updated: {format_timestamp(refreshed_at)}", ha="center", va="center",
             fontsize=11, color="#bbbbbb")
    return fig


def render_summary_image(path: str, total_countries: int, top: list[SummaryEntry],
                         refreshed_at: datetime) -> str:
    """Draw the summary and swap it into place at ``path``.

    The image is written to a temporary file in the same directory and
    renamed over the old one, so readers never see a half-written file.
    """
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fig = build_figure(total_countries, top, refreshed_at)
        fd, tmp_path = tempfile.mkstemp(prefix=".summary-", suffix=".png", dir=directory)
        try:
            with os.fdopen(fd, "wb") as fh:
                fig.savefig(fh, format="png", dpi=DPI, facecolor=BACKGROUND)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except Exception as e:
        raise RenderFailure(f"could not render {path}: {e}") from e
    return path


def render_summary_safely(path: str, total_countries: int, top: list[SummaryEntry],
                          refreshed_at: datetime) -> str | None:
    try:
        render_summary_image(path, total_countries, top, refreshed_at)
    except RenderFailure:
        logger.exception("Summary image generation failed")
        return None
    logger.info("Summary image written to %s", path)
    return path
