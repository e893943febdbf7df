from sqlalchemy import BigInteger, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import validates

from .database import Base


def name_key(name: str) -> str:
    # folded in Python, SQL lower() only folds ASCII on some stores
    return name.casefold()


class Countries(Base):
    __tablename__ = "countries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    name_key = Column(String(255), nullable=False, unique=True)
    capital = Column(String(255))
    region = Column(String(255))
    population = Column(BigInteger, nullable=False, default=0)
    currency_code = Column(String(10))
    exchange_rate = Column(Float)
    estimated_gdp = Column(Float)
    flag_url = Column(Text)
    last_refreshed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_countries_region", "region"),
        Index("idx_countries_currency", "currency_code"),
        Index("idx_countries_gdp", estimated_gdp.desc()),
    )

    @validates("name")
    def fold_name(self, key, value):
        self.name_key = name_key(value)
        return value


class RefreshMeta(Base):
    __tablename__ = "refresh_meta"
    id = Column(Integer, primary_key=True)
    total_countries = Column(Integer, nullable=False, default=0)
    last_refreshed_at = Column(DateTime(timezone=True))
