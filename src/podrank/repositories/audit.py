"""rating_changes persistence."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from podrank.domain.common import TargetType
from podrank.models import RatingChange


class AuditRepository:
    def insert_entries(self, session: Session, rows: Sequence[dict[str, Any]]) -> None:
        if not rows:
            return
        session.execute(insert(RatingChange), list(rows))

    def history(
        self,
        session: Session,
        *,
        target_type: TargetType,
        target_id: str,
        limit: int,
    ) -> list[RatingChange]:
        """Entries for one target, newest first."""
        statement = (
            select(RatingChange)
            .where(RatingChange.target_type == target_type.value, RatingChange.target_id == target_id)
            .order_by(RatingChange.created_at.desc(), RatingChange.id.desc())
            .limit(limit)
        )
        return list(session.execute(statement).scalars().all())
