"""Guard against two unconfirmed submissions sharing a participant."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from podrank.domain.common import GameType, Participant
from podrank.domain.errors import AlreadyPendingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingSubmission:
    token: str
    game_type: GameType
    participants: tuple[Participant, ...]
    anchor: str | None
    submitted_by: str | None
    submitted_by_admin: bool
    reserved_at: float

    @property
    def keys(self) -> frozenset[tuple[GameType, str]]:
        return frozenset((self.game_type, participant.entity_id) for participant in self.participants)


class PendingRegistry:
    """Participants with an unconfirmed operation, released on confirm, cancel or timeout."""

    def __init__(self, timeout_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._submissions: dict[str, PendingSubmission] = {}
        self._owners: dict[tuple[GameType, str], str] = {}

    def reserve(
        self,
        game_type: GameType,
        participants: Sequence[Participant],
        *,
        anchor: str | None = None,
        submitted_by: str | None = None,
        submitted_by_admin: bool = False,
    ) -> PendingSubmission:
        with self._lock:
            self._expire_locked()
            keys = [(game_type, participant.entity_id) for participant in participants]
            busy = sorted({entity_id for key_type, entity_id in keys if (key_type, entity_id) in self._owners})
            if busy:
                raise AlreadyPendingError(busy)

            submission = PendingSubmission(
                token=secrets.token_hex(8),
                game_type=game_type,
                participants=tuple(participants),
                anchor=anchor,
                submitted_by=submitted_by,
                submitted_by_admin=submitted_by_admin,
                reserved_at=self._clock(),
            )
            self._submissions[submission.token] = submission
            for key in keys:
                self._owners[key] = submission.token
            return submission

    def release(self, token: str) -> PendingSubmission | None:
        """Remove a reservation; ``None`` when unknown or already expired."""
        with self._lock:
            self._expire_locked()
            return self._release_locked(token)

    def get(self, token: str) -> PendingSubmission | None:
        with self._lock:
            self._expire_locked()
            return self._submissions.get(token)

    def conflicts(
        self,
        game_type: GameType,
        entity_ids: Sequence[str],
        *,
        token: str | None = None,
    ) -> list[str]:
        """Entities reserved by a submission other than ``token``."""
        with self._lock:
            self._expire_locked()
            return sorted(
                {
                    entity_id
                    for entity_id in entity_ids
                    if self._owners.get((game_type, entity_id)) not in (None, token)
                }
            )

    def expire(self) -> list[PendingSubmission]:
        with self._lock:
            return self._expire_locked()

    def __len__(self) -> int:
        return len(self._submissions)

    def _expire_locked(self) -> list[PendingSubmission]:
        now = self._clock()
        expired_tokens = [
            token
            for token, submission in self._submissions.items()
            if now - submission.reserved_at >= self.timeout_seconds
        ]
        expired: list[PendingSubmission] = []
        for token in expired_tokens:
            submission = self._release_locked(token)
            if submission is not None:
                logger.info("Pending submission %s timed out", token)
                expired.append(submission)
        return expired

    def _release_locked(self, token: str) -> PendingSubmission | None:
        submission = self._submissions.pop(token, None)
        if submission is None:
            return None
        for key in submission.keys:
            if self._owners.get(key) == token:
                del self._owners[key]
        return submission
