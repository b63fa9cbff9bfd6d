from sqlalchemy import Column, Date, DateTime, Float, String, Text, UniqueConstraint

from coinlens.database import Base


class PriceHistory(Base):
    """Persisted daily price/volume history, the fallback data tier."""

    __tablename__ = "price_history"
    __table_args__ = (UniqueConstraint("symbol", "date", name="uq_price_history_symbol_date"),)

    id = Column(String, primary_key=True)
    symbol = Column(String, index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    price = Column(Float, nullable=False)
    volume = Column(Float, nullable=True)
    source = Column(String, nullable=True)
    as_of_date = Column(Date, nullable=True)


class ResultCacheEntry(Base):
    """Externalized result cache row shared by every engine process."""

    __tablename__ = "result_cache"

    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
