"""Game master records and participation rows."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from podrank.domain.common import GameStatus, GameType
from podrank.models import DeckMatch, Game, Match


class GameRepository:
    """Queries over ``games_master``, ``matches`` and ``deck_matches``."""

    def get(self, session: Session, game_id: str) -> Game | None:
        return session.get(Game, game_id)

    def exists(self, session: Session, game_id: str) -> bool:
        return session.get(Game, game_id) is not None

    def create(
        self,
        session: Session,
        *,
        game_id: str,
        game_type: GameType,
        sequence: float,
        created_at: datetime,
        submitted_by: str | None = None,
        submitted_by_admin: bool = False,
    ) -> Game:
        game = Game(
            id=game_id,
            game_type=game_type.value,
            sequence=sequence,
            status=GameStatus.CONFIRMED.value,
            active=True,
            submitted_by=submitted_by,
            submitted_by_admin=submitted_by_admin,
            created_at=created_at,
        )
        session.add(game)
        return game

    def get_confirmed_active(self, session: Session, game_id: str) -> Game | None:
        game = session.get(Game, game_id)
        if game is None or game.status != GameStatus.CONFIRMED.value or not game.active:
            return None
        return game

    def replay_order(self, session: Session, game_types: Iterable[GameType]) -> list[Game]:
        """Confirmed, active games of the given types in deterministic history order."""
        statement = (
            select(Game)
            .where(
                Game.status == GameStatus.CONFIRMED.value,
                Game.active.is_(True),
                Game.game_type.in_([game_type.value for game_type in game_types]),
            )
            .order_by(Game.sequence, Game.created_at, Game.id)
        )
        return list(session.execute(statement).scalars().all())

    def all_in_order(self, session: Session) -> list[Game]:
        return list(session.execute(select(Game).order_by(Game.sequence, Game.created_at, Game.id)).scalars().all())

    def max_active_sequence(self, session: Session) -> float | None:
        return session.scalar(
            select(func.max(Game.sequence)).where(Game.status == GameStatus.CONFIRMED.value, Game.active.is_(True))
        )

    def min_confirmed_sequence(self, session: Session) -> float | None:
        """Smallest key held by any confirmed game, active or not."""
        return session.scalar(select(func.min(Game.sequence)).where(Game.status == GameStatus.CONFIRMED.value))

    def next_confirmed_sequence(self, session: Session, sequence: float) -> float | None:
        """Smallest confirmed sequence strictly greater than ``sequence``."""
        return session.scalar(
            select(func.min(Game.sequence)).where(
                Game.status == GameStatus.CONFIRMED.value,
                Game.sequence > sequence,
            )
        )

    def matches_for(self, session: Session, game_id: str) -> list[Match]:
        return list(session.execute(select(Match).where(Match.game_id == game_id).order_by(Match.id)).scalars().all())

    def deck_matches_for(self, session: Session, game_id: str) -> list[DeckMatch]:
        statement = select(DeckMatch).where(DeckMatch.game_id == game_id).order_by(DeckMatch.id)
        return list(session.execute(statement).scalars().all())

    def matches_by_game(self, session: Session, game_ids: Sequence[str]) -> dict[str, list[Match]]:
        grouped: dict[str, list[Match]] = defaultdict(list)
        if not game_ids:
            return grouped
        statement = select(Match).where(Match.game_id.in_(game_ids)).order_by(Match.id)
        for row in session.execute(statement).scalars():
            grouped[row.game_id].append(row)
        return grouped

    def deck_matches_by_game(self, session: Session, game_ids: Sequence[str]) -> dict[str, list[DeckMatch]]:
        grouped: dict[str, list[DeckMatch]] = defaultdict(list)
        if not game_ids:
            return grouped
        statement = select(DeckMatch).where(DeckMatch.game_id.in_(game_ids)).order_by(DeckMatch.id)
        for row in session.execute(statement).scalars():
            grouped[row.game_id].append(row)
        return grouped

    def matches_for_player(self, session: Session, player_id: str) -> list[Match]:
        statement = select(Match).where(Match.player_id == player_id).order_by(Match.id)
        return list(session.execute(statement).scalars().all())

    def delete_participation(self, session: Session, game_id: str) -> None:
        """Delete every match and deck_match row of one game."""
        session.execute(
            delete(DeckMatch).where(DeckMatch.game_id == game_id).execution_options(synchronize_session="fetch")
        )
        session.execute(delete(Match).where(Match.game_id == game_id).execution_options(synchronize_session="fetch"))

    def delete_commander_rows(self, session: Session, game_ids: Sequence[str]) -> None:
        """Drop deck_matches rows derived from player games."""
        if not game_ids:
            return
        session.execute(
            delete(DeckMatch)
            .where(DeckMatch.game_id.in_(game_ids))
            .execution_options(synchronize_session="fetch")
        )
