"""Exceptions raised by league operations before any write happens."""

from __future__ import annotations


class ValidationError(ValueError):
    """Submitted data breaks a league rule."""


class NotFoundError(LookupError):
    """A referenced game or entity does not exist (or is not confirmed)."""


class AlreadyPendingError(RuntimeError):
    """A participant already has an unconfirmed submission."""

    def __init__(self, entity_ids: list[str]) -> None:
        self.entity_ids = entity_ids
        joined = ", ".join(entity_ids)
        super().__init__(f"Already pending confirmation for: {joined}")


__all__ = ["AlreadyPendingError", "NotFoundError", "ValidationError"]
