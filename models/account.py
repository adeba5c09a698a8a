from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, String, func, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    # Serialized schemas.account.AccountConnection; always carries a "kind" tag.
    connection: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    slug: Mapped[str | None] = mapped_column(String(160), unique=True, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    positions = relationship(
        "Position",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    @property
    def kind(self) -> str:
        return (self.connection or {}).get("kind", "")
