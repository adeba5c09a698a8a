from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class PriceQuote(Base):
    """Last quote seen per (source, key). Sources are merged at read time only."""

    __tablename__ = "price_quotes"

    source: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(64), default="")
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    change_24h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    change_percent_24h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
