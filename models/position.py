from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    asset_class: Mapped[str] = mapped_column(String(16), nullable=False, default="other")
    asset_class_override: Mapped[str | None] = mapped_column(String(16), nullable=True)
    symbol: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(256), default="")
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cost_basis: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchase_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # NULL means a standalone manual position that no sync may touch.
    account_id: Mapped[str | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=True
    )
    chain: Mapped[str | None] = mapped_column(String(64), nullable=True)
    protocol: Mapped[str | None] = mapped_column(String(128), nullable=True)
    detail: Mapped[str | None] = mapped_column(String(256), nullable=True)
    price_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_debt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    unlock_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sort_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    account = relationship("Account", back_populates="positions")

    @property
    def effective_asset_class(self) -> str:
        return self.asset_class_override or self.asset_class
