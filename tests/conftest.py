"""Shared fixtures: a temp-file SQLite league with controllable clocks."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from podrank.config import LeagueConfig
from podrank.db import create_db_engine, create_session_factory
from podrank.domain.decay import DecayPolicy
from podrank.repositories.base import ensure_schema
from podrank.services.league import LeagueService


class FixedClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 20, 0, 0))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def make_session_factory(tmp_path):
    engines = []

    def _make(name: str = "league"):
        engine = create_db_engine(f"sqlite:///{tmp_path / f'{name}.db'}")
        ensure_schema(engine)
        engines.append(engine)
        return create_session_factory(engine)

    yield _make
    for engine in engines:
        engine.dispose()


@pytest.fixture
def session_factory(make_session_factory):
    return make_session_factory()


@pytest.fixture
def league_config() -> LeagueConfig:
    return LeagueConfig(name="test", decay=DecayPolicy(enabled=False))


@pytest.fixture
def league(session_factory, league_config, clock, monotonic) -> LeagueService:
    return LeagueService(session_factory, league_config, clock=clock, pending_clock=monotonic)
