"""Fire-and-forget audit trail of rating changes."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from podrank.domain.common import ChangeType, RatingState, TargetType
from podrank.repositories.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    target_type: TargetType
    target_id: str
    change_type: ChangeType
    old: RatingState
    new: RatingState
    created_at: datetime
    actor: str | None = None
    display_name: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
    track_counts: bool = True

    def as_row(self) -> dict[str, Any]:
        return {
            "target_type": self.target_type.value,
            "target_id": self.target_id,
            "target_display_name": self.display_name or f"{self.target_type.value.title()} {self.target_id}",
            "change_type": self.change_type.value,
            "actor": self.actor,
            "old_mu": self.old.mu,
            "old_sigma": self.old.sigma,
            "old_elo": self.old.elo,
            "new_mu": self.new.mu,
            "new_sigma": self.new.sigma,
            "new_elo": self.new.elo,
            "old_wins": self.old.wins if self.track_counts else None,
            "old_losses": self.old.losses if self.track_counts else None,
            "old_draws": self.old.draws if self.track_counts else None,
            "new_wins": self.new.wins if self.track_counts else None,
            "new_losses": self.new.losses if self.track_counts else None,
            "new_draws": self.new.draws if self.track_counts else None,
            "parameters": self.parameters or None,
            "reason": self.reason,
            "created_at": self.created_at,
        }


class AuditLog:
    """Writes audit entries in their own transaction.

    A failed write is logged and dropped; it never rolls back the change it
    describes.
    """

    def __init__(self, session_factory, repository: AuditRepository | None = None) -> None:
        self._session_factory = session_factory
        self._repository = repository or AuditRepository()

    def append(self, entries: Sequence[AuditEntry]) -> bool:
        if not entries:
            return True
        try:
            with self._session_factory() as session:
                try:
                    self._repository.insert_entries(session, [entry.as_row() for entry in entries])
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
        except SQLAlchemyError:
            logger.exception("Failed to write %d audit entries", len(entries))
            return False
        return True
