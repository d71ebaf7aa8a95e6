"""rating_changes (audit log) table model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from podrank.models.base import Base, JSONType


class RatingChange(Base):
    """Append-only record of one rating change and its cause."""

    __tablename__ = "rating_changes"
    __table_args__ = (
        Index("idx_rating_changes_target", "target_type", "target_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_id: Mapped[str] = mapped_column(String(128), nullable=False)
    target_display_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    old_mu: Mapped[float] = mapped_column(Float, nullable=False)
    old_sigma: Mapped[float] = mapped_column(Float, nullable=False)
    old_elo: Mapped[int] = mapped_column(Integer, nullable=False)
    new_mu: Mapped[float] = mapped_column(Float, nullable=False)
    new_sigma: Mapped[float] = mapped_column(Float, nullable=False)
    new_elo: Mapped[int] = mapped_column(Integer, nullable=False)
    old_wins: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_losses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_draws: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_wins: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_losses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_draws: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
