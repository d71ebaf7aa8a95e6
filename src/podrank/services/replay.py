"""Full-history recalculation of player and deck ratings.

Ratings depend on game order, so any historical edit is handled by resetting
every entity of a type to the prior and re-running all confirmed, active games
in sequence order through the same scoring used for live submissions.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from podrank.domain.calculator import PodRatingCalculator
from podrank.domain.common import ChangeType, GameType, Outcome, Participant, RatingState, TargetType, utcnow
from podrank.domain.decay import DecayPolicy, compute_decay
from podrank.domain.scoring import DeckEntry, score_commanders, score_deck_entries, score_player_game
from podrank.models import DeckMatch, Game, Match
from podrank.repositories.entities import EntityRepository, apply_state
from podrank.repositories.games import GameRepository
from podrank.services.audit import AuditEntry

logger = logging.getLogger(__name__)

RowWrite = tuple[Match | DeckMatch, float, float]


@dataclass(frozen=True)
class ReplaySummary:
    """Outcome of one replay sweep over one entity type."""

    target_type: TargetType
    games_replayed: int
    participations: int
    entities_written: int
    removed_entities: tuple[str, ...]
    warnings: tuple[str, ...]

    @property
    def partial(self) -> bool:
        return bool(self.warnings)


@dataclass
class _PlayerTrack:
    state: RatingState
    last_active: datetime | None = None
    decay_days_applied: int = 0


class ReplayEngine:
    def __init__(
        self,
        calculator: PodRatingCalculator,
        decay_policy: DecayPolicy,
        *,
        entities: EntityRepository | None = None,
        games: GameRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.calculator = calculator
        self.decay_policy = decay_policy
        self.entities = entities or EntityRepository()
        self.games = games or GameRepository()
        self.clock = clock

    def replay(
        self,
        session: Session,
        target_types: Iterable[TargetType],
    ) -> tuple[list[ReplaySummary], list[AuditEntry]]:
        """Replay the requested entity types; the caller commits."""
        requested = set(target_types)
        summaries: list[ReplaySummary] = []
        audit: list[AuditEntry] = []
        if TargetType.PLAYER in requested:
            summaries.append(self.replay_players(session, audit))
        if TargetType.DECK in requested:
            summaries.append(self.replay_decks(session, audit))
        return summaries, audit

    def replay_players(self, session: Session, audit: list[AuditEntry]) -> ReplaySummary:
        session.flush()
        now = self.clock()
        games = self.games.replay_order(session, [GameType.PLAYER])
        rows_by_game = self.games.matches_by_game(session, [game.id for game in games])

        for rows in rows_by_game.values():
            for row in rows:
                self.entities.get_or_create_player(session, row.player_id)
        session.flush()

        players = {player.id: player for player in self.entities.players(session)}
        tracks = {player_id: _PlayerTrack(state=self._prior()) for player_id in players}

        warnings: list[str] = []
        row_writes: dict[str, list[RowWrite]] = defaultdict(list)
        replayed = 0
        participations = 0
        for game in games:
            rows = rows_by_game.get(game.id, [])
            if len(rows) < 2:
                warnings.append(f"game {game.id}: skipped, only {len(rows)} participation rows")
                continue

            for row in rows:
                self._decay_track(tracks[row.player_id], game.created_at)

            participants = [
                Participant(
                    entity_id=row.player_id,
                    outcome=Outcome(row.outcome),
                    turn_order=row.turn_order,
                    deck_ref=row.deck_ref,
                )
                for row in rows
            ]
            states = {row.player_id: tracks[row.player_id].state for row in rows}
            scored = score_player_game(self.calculator, participants, states)

            for row, result in zip(rows, scored):
                track = tracks[row.player_id]
                track.state = result.after
                track.last_active = game.created_at
                track.decay_days_applied = 0
                row_writes[game.id].append((row, result.after.mu, result.after.sigma))
                audit.append(self._audit_entry(TargetType.PLAYER, result.entity_id, result.before, result.after, game, now))
            replayed += 1
            participations += len(rows)

        for track in tracks.values():
            self._decay_track(track, now)

        warnings.extend(self._write_rows(session, row_writes))

        written = 0
        for player_id, track in tracks.items():
            player = players[player_id]
            try:
                with session.begin_nested():
                    apply_state(player, track.state)
                    player.last_active = track.last_active
                    player.decay_days_applied = track.decay_days_applied
                written += 1
            except SQLAlchemyError as exc:
                message = f"player {player_id}: failed to store replayed rating ({exc.__class__.__name__})"
                logger.warning(message)
                warnings.append(message)

        removed = self.entities.delete_unreferenced(session, TargetType.PLAYER)
        logger.info(
            "Replayed %d player games (%d participations); wrote %d players, removed %d",
            replayed,
            participations,
            written,
            len(removed),
        )
        return ReplaySummary(
            target_type=TargetType.PLAYER,
            games_replayed=replayed,
            participations=participations,
            entities_written=written,
            removed_entities=tuple(removed),
            warnings=tuple(warnings),
        )

    def replay_decks(self, session: Session, audit: list[AuditEntry]) -> ReplaySummary:
        """Replay deck games and the commander side of player games together.

        Commander rows of player games are derived data; they are deleted and
        regenerated from the current deck references.
        """
        session.flush()
        now = self.clock()
        games = self.games.replay_order(session, [GameType.PLAYER, GameType.DECK])
        player_game_ids = [game.id for game in games if game.game_type == GameType.PLAYER.value]
        deck_game_ids = [game.id for game in games if game.game_type == GameType.DECK.value]

        self.games.delete_commander_rows(session, player_game_ids)
        deck_rows_by_game = self.games.deck_matches_by_game(session, deck_game_ids)
        match_rows_by_game = self.games.matches_by_game(session, player_game_ids)

        for rows in deck_rows_by_game.values():
            for row in rows:
                self.entities.get_or_create_deck(session, row.deck_id)
        for rows in match_rows_by_game.values():
            for row in rows:
                if row.deck_ref is not None:
                    self.entities.get_or_create_deck(session, row.deck_ref)
        session.flush()

        decks = {deck.id: deck for deck in self.entities.all_entities(session, TargetType.DECK)}
        states: dict[str, RatingState] = {deck_id: self._prior() for deck_id in decks}

        warnings: list[str] = []
        row_writes: dict[str, list[RowWrite]] = defaultdict(list)
        new_rows: dict[str, list[DeckMatch]] = defaultdict(list)
        replayed = 0
        participations = 0
        for game in games:
            if game.game_type == GameType.DECK.value:
                rows = deck_rows_by_game.get(game.id, [])
                if len(rows) < 2:
                    warnings.append(f"game {game.id}: skipped, only {len(rows)} deck rows")
                    continue
                entries = [
                    DeckEntry(
                        deck_id=row.deck_id,
                        outcome=Outcome(row.outcome),
                        turn_order=row.turn_order,
                        assigned_player_id=row.assigned_player_id,
                    )
                    for row in rows
                ]
                scored = score_deck_entries(self.calculator, entries, states)
                for row, result in zip(rows, scored):
                    row_writes[game.id].append((row, result.after.mu, result.after.sigma))
            else:
                participants = [
                    Participant(
                        entity_id=row.player_id,
                        outcome=Outcome(row.outcome),
                        turn_order=row.turn_order,
                        deck_ref=row.deck_ref,
                    )
                    for row in match_rows_by_game.get(game.id, [])
                ]
                scored = score_commanders(self.calculator, participants, states)
                if not scored:
                    continue
                new_rows[game.id].extend(
                    DeckMatch(
                        game_id=game.id,
                        deck_id=result.entity_id,
                        outcome=result.outcome.value,
                        turn_order=result.turn_order,
                        mu=result.after.mu,
                        sigma=result.after.sigma,
                        assigned_player_id=result.assigned_player_id,
                    )
                    for result in scored
                )

            for result in scored:
                states[result.entity_id] = result.after
                audit.append(self._audit_entry(TargetType.DECK, result.entity_id, result.before, result.after, game, now))
            replayed += 1
            participations += len(scored)

        warnings.extend(self._write_rows(session, row_writes))
        for game_id, rows in new_rows.items():
            try:
                with session.begin_nested():
                    session.add_all(rows)
            except SQLAlchemyError as exc:
                message = f"game {game_id}: failed to store commander rows ({exc.__class__.__name__})"
                logger.warning(message)
                warnings.append(message)

        written = 0
        for deck_id, state in states.items():
            try:
                with session.begin_nested():
                    apply_state(decks[deck_id], state)
                written += 1
            except SQLAlchemyError as exc:
                message = f"deck {deck_id}: failed to store replayed rating ({exc.__class__.__name__})"
                logger.warning(message)
                warnings.append(message)

        removed = self.entities.delete_unreferenced(session, TargetType.DECK)
        logger.info(
            "Replayed %d games for decks (%d participations); wrote %d decks, removed %d",
            replayed,
            participations,
            written,
            len(removed),
        )
        return ReplaySummary(
            target_type=TargetType.DECK,
            games_replayed=replayed,
            participations=participations,
            entities_written=written,
            removed_entities=tuple(removed),
            warnings=tuple(warnings),
        )

    def _prior(self) -> RatingState:
        params = self.calculator.params
        return RatingState(mu=params.initial_mu, sigma=params.initial_sigma)

    def _decay_track(self, track: _PlayerTrack, at: datetime) -> None:
        step = compute_decay(
            self.decay_policy,
            mu=track.state.mu,
            sigma=track.state.sigma,
            games_played=track.state.games_played,
            last_active=track.last_active,
            days_applied=track.decay_days_applied,
            now=at,
        )
        if step is None:
            return
        track.state = track.state.with_rating(step.after_mu, step.after_sigma)
        track.decay_days_applied = step.days_applied

    def _write_rows(self, session: Session, row_writes: dict[str, list[RowWrite]]) -> list[str]:
        warnings: list[str] = []
        for game_id, writes in row_writes.items():
            try:
                with session.begin_nested():
                    for row, mu, sigma in writes:
                        row.mu = mu
                        row.sigma = sigma
            except SQLAlchemyError as exc:
                message = f"game {game_id}: failed to store replayed match rows ({exc.__class__.__name__})"
                logger.warning(message)
                warnings.append(message)
        return warnings

    @staticmethod
    def _audit_entry(
        target_type: TargetType,
        entity_id: str,
        before: RatingState,
        after: RatingState,
        game: Game,
        now: datetime,
    ) -> AuditEntry:
        return AuditEntry(
            target_type=target_type,
            target_id=entity_id,
            change_type=ChangeType.GAME,
            old=before,
            new=after,
            created_at=now,
            parameters={"recalculation": True, "game_id": game.id, "sequence": game.sequence},
        )
