"""Persistence helpers grouped by table."""

from podrank.repositories.audit import AuditRepository
from podrank.repositories.base import ensure_schema
from podrank.repositories.entities import EntityRepository
from podrank.repositories.games import GameRepository

__all__ = ["AuditRepository", "EntityRepository", "GameRepository", "ensure_schema"]
