"""League facade: every mutating operation, its snapshot and its audit trail."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import assert_never

from sqlalchemy.orm import Session

from podrank.config import LeagueConfig
from podrank.db import create_db_engine, create_session_factory
from podrank.domain.calculator import PodRatingCalculator
from podrank.domain.common import (
    ChangeType,
    GameStatus,
    GameType,
    Outcome,
    Participant,
    RatingState,
    TargetType,
    utcnow,
)
from podrank.domain.decay import compute_decay
from podrank.domain.elo import mu_for_elo_override
from podrank.domain.errors import AlreadyPendingError, NotFoundError, ValidationError
from podrank.domain.scoring import (
    DeckEntry,
    ScoredParticipant,
    score_commanders,
    score_deck_entries,
    score_player_game,
)
from podrank.domain.snapshots import (
    ActiveToggle,
    DeckAssignmentChange,
    DecayEntry,
    DecaySnapshot,
    EntityImage,
    GameResultsEdit,
    MatchRow,
    MatchSnapshot,
    OverrideChange,
    OverrideSnapshot,
    RatingOverride,
    Snapshot,
    TurnOrderChange,
    TurnOrderEdit,
    describe,
)
from podrank.domain.validation import (
    NO_DECK,
    generate_game_id,
    normalize_deck_name,
    parse_wld,
    validate_participants,
    validate_turn_order,
)
from podrank.models import Deck, DeckMatch, Game, Match, Player, RatingChange
from podrank.repositories.audit import AuditRepository
from podrank.repositories.base import ensure_schema
from podrank.repositories.entities import (
    EntityRepository,
    RatedEntity,
    apply_image,
    apply_state,
    entity_image,
    entity_state,
)
from podrank.repositories.games import GameRepository
from podrank.services.audit import AuditEntry, AuditLog
from podrank.services.ledger import SnapshotLedger
from podrank.services.pending import PendingRegistry, PendingSubmission
from podrank.services.replay import ReplayEngine, ReplaySummary
from podrank.services.sequencer import Sequencer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticipantResult:
    entity_id: str
    outcome: Outcome
    turn_order: int | None
    before: RatingState
    after: RatingState
    assigned_player_id: str | None = None

    @property
    def elo_change(self) -> int:
        return self.after.elo - self.before.elo


@dataclass(frozen=True)
class SubmissionResult:
    game_id: str
    game_type: GameType
    sequence: float
    injected: bool
    participants: tuple[ParticipantResult, ...]
    commanders: tuple[ParticipantResult, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChangeSummary:
    """Result of a manual rating override."""

    description: str
    target_type: TargetType
    target_id: str
    change_type: ChangeType
    before: RatingState
    after: RatingState


@dataclass(frozen=True)
class EditResult:
    description: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerResult:
    """What an undo or redo reverted or re-applied."""

    description: str
    snapshot: Snapshot
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class WinPrediction:
    """Chance of one entity finishing first among the entities compared."""

    entity_id: str
    elo: int
    probability: float
    rated: bool


@dataclass(frozen=True)
class DecaySummary:
    entries: tuple[DecayEntry, ...]

    @property
    def affected(self) -> tuple[str, ...]:
        return tuple(entry.after.entity_id for entry in self.entries)


@dataclass(frozen=True)
class EntityView:
    target_type: TargetType
    entity_id: str
    display_name: str
    mu: float
    sigma: float
    elo: int
    wins: int
    losses: int
    draws: int
    last_active: datetime | None = None
    default_deck: str | None = None
    restricted: bool = False

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.draws


def _replay_targets(game_type: GameType) -> tuple[TargetType, ...]:
    # Player games also rate the decks their players piloted.
    if game_type is GameType.PLAYER:
        return (TargetType.PLAYER, TargetType.DECK)
    return (TargetType.DECK,)


class LeagueService:
    """Owns the ledger, the pending guard and the rating engine for one league.

    All mutations run under one re-entrant lock, so a replay never interleaves
    with a submission or another edit.
    """

    def __init__(
        self,
        session_factory,
        config: LeagueConfig | None = None,
        *,
        calculator: PodRatingCalculator | None = None,
        ledger: SnapshotLedger | None = None,
        pending: PendingRegistry | None = None,
        audit_log: AuditLog | None = None,
        replayer: ReplayEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        pending_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or LeagueConfig(name="default")
        self._session_factory = session_factory
        self.clock = clock
        self.calculator = calculator or PodRatingCalculator(self.config.parameters, self.config.pipeline)
        self.decay_policy = self.config.decay
        self.ledger = ledger or SnapshotLedger(self.config.ledger_max_size)
        self.pending = pending or PendingRegistry(self.config.pending_timeout_seconds, clock=pending_clock)
        self.entities = EntityRepository()
        self.games = GameRepository()
        self.audit_repository = AuditRepository()
        self.audit_log = audit_log or AuditLog(session_factory, self.audit_repository)
        self.sequencer = Sequencer(self.games)
        self.replayer = replayer or ReplayEngine(
            self.calculator,
            self.decay_policy,
            entities=self.entities,
            games=self.games,
            clock=clock,
        )
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: LeagueConfig, **kwargs) -> LeagueService:
        """Build a service on the configured database, creating tables when missing."""
        engine = create_db_engine(config.database_url)
        ensure_schema(engine)
        return cls(create_session_factory(engine), config, **kwargs)

    # -- submission ---------------------------------------------------------

    def submit_game(
        self,
        game_type: GameType | str,
        participants: Sequence[Participant],
        *,
        anchor: str | None = None,
        submitted_by: str | None = None,
        submitted_by_admin: bool = False,
    ) -> SubmissionResult:
        """Record a completed game and rate it.

        With ``anchor`` the game is placed after that game (``"0"`` places it
        before all history); anything but an append triggers a full replay.
        """
        return self._submit(
            GameType(game_type),
            participants,
            anchor=anchor,
            submitted_by=submitted_by,
            submitted_by_admin=submitted_by_admin,
            pending_token=None,
        )

    def propose_game(
        self,
        game_type: GameType | str,
        participants: Sequence[Participant],
        *,
        anchor: str | None = None,
        submitted_by: str | None = None,
        submitted_by_admin: bool = False,
    ) -> PendingSubmission:
        """Validate a game and hold its participants until it is confirmed."""
        game_type = GameType(game_type)
        normalized, _ = self._normalize_participants(game_type, participants)
        validate_participants(game_type, normalized, self.config.limits)
        with self._session() as session:
            self._check_restricted(session, game_type, normalized)
        submission = self.pending.reserve(
            game_type,
            normalized,
            anchor=anchor,
            submitted_by=submitted_by,
            submitted_by_admin=submitted_by_admin,
        )
        logger.info("Game proposal %s pending for %d participants", submission.token, len(normalized))
        return submission

    def confirm_game(self, token: str) -> SubmissionResult:
        submission = self.pending.get(token)
        if submission is None:
            raise NotFoundError(f"No pending submission {token} (cancelled or timed out)")
        try:
            return self._submit(
                submission.game_type,
                submission.participants,
                anchor=submission.anchor,
                submitted_by=submission.submitted_by,
                submitted_by_admin=submission.submitted_by_admin,
                pending_token=token,
            )
        finally:
            self.pending.release(token)

    def cancel_game(self, token: str) -> bool:
        return self.pending.release(token) is not None

    def expire_pending(self) -> list[PendingSubmission]:
        return self.pending.expire()

    def _submit(
        self,
        game_type: GameType,
        participants: Sequence[Participant],
        *,
        anchor: str | None,
        submitted_by: str | None,
        submitted_by_admin: bool,
        pending_token: str | None,
    ) -> SubmissionResult:
        normalized, display_names = self._normalize_participants(game_type, participants)
        validate_participants(game_type, normalized, self.config.limits)
        busy = self.pending.conflicts(game_type, [p.entity_id for p in normalized], token=pending_token)
        if busy:
            raise AlreadyPendingError(busy)

        with self._lock:
            audit: list[AuditEntry] = []
            with self._session() as session:
                self._check_restricted(session, game_type, normalized)
                sequence = self.sequencer.next_sequence(session, anchor)
                # Read after sequencing: a renormalization may have rewritten the keys.
                tail = self.games.max_active_sequence(session)
                injected = tail is not None and sequence < tail

                now = self.clock()
                game = self.games.create(
                    session,
                    game_id=generate_game_id(lambda candidate: self.games.exists(session, candidate)),
                    game_type=game_type,
                    sequence=sequence,
                    created_at=now,
                    submitted_by=submitted_by,
                    submitted_by_admin=submitted_by_admin,
                )
                session.flush()

                if injected:
                    result, snapshot = self._inject_game(session, game, game_type, normalized, display_names, audit)
                else:
                    result, snapshot = self._append_game(session, game, game_type, normalized, display_names, audit)

            self.ledger.push(snapshot)
            self.audit_log.append(audit)

        logger.info(
            "Recorded %s game %s at sequence %s (%s)",
            game_type.value,
            result.game_id,
            result.sequence,
            "injected" if result.injected else "appended",
        )
        return result

    def _append_game(
        self,
        session: Session,
        game: Game,
        game_type: GameType,
        participants: Sequence[Participant],
        display_names: dict[str, str],
        audit: list[AuditEntry],
    ) -> tuple[SubmissionResult, MatchSnapshot]:
        """Rate a game placed at the end of history directly from current ratings."""
        now = game.created_at
        touched: dict[tuple[TargetType, str], RatedEntity] = {}
        scored: list[ScoredParticipant] = []
        commanders: list[ScoredParticipant] = []
        match_rows: list[MatchRow] = []
        deck_rows: list[MatchRow] = []

        if game_type is GameType.PLAYER:
            players = {p.entity_id: self.entities.get_or_create_player(session, p.entity_id) for p in participants}
            participants = [
                self._with_default_deck(participant, players[participant.entity_id]) for participant in participants
            ]
            decks = {
                p.deck_ref: self.entities.get_or_create_deck(session, p.deck_ref, display_names.get(p.deck_ref))
                for p in participants
                if p.deck_ref is not None
            }
            touched.update({(TargetType.PLAYER, key): value for key, value in players.items()})
            touched.update({(TargetType.DECK, key): value for key, value in decks.items()})
            before = tuple(entity_image(entity) for entity in touched.values())

            for player in players.values():
                self._decay_before_game(player, now, game.id, audit)

            scored = score_player_game(
                self.calculator,
                participants,
                {player_id: entity_state(player) for player_id, player in players.items()},
            )
            for participant, result in zip(participants, scored):
                player = players[result.entity_id]
                apply_state(player, result.after)
                player.last_active = now
                player.decay_days_applied = 0
                match_rows.append(
                    MatchRow(
                        entity_id=result.entity_id,
                        outcome=result.outcome,
                        turn_order=result.turn_order,
                        mu=result.after.mu,
                        sigma=result.after.sigma,
                        deck_ref=participant.deck_ref,
                    )
                )

            commanders = score_commanders(
                self.calculator,
                participants,
                {deck_id: entity_state(deck) for deck_id, deck in decks.items()},
            )
        else:
            decks = {
                p.entity_id: self.entities.get_or_create_deck(session, p.entity_id, display_names.get(p.entity_id))
                for p in participants
            }
            touched.update({(TargetType.DECK, key): value for key, value in decks.items()})
            before = tuple(entity_image(entity) for entity in touched.values())
            commanders = score_deck_entries(
                self.calculator,
                [DeckEntry(deck_id=p.entity_id, outcome=p.outcome, turn_order=p.turn_order) for p in participants],
                {deck_id: entity_state(deck) for deck_id, deck in decks.items()},
            )

        for result in commanders:
            apply_state(decks[result.entity_id], result.after)
            deck_rows.append(
                MatchRow(
                    entity_id=result.entity_id,
                    outcome=result.outcome,
                    turn_order=result.turn_order,
                    mu=result.after.mu,
                    sigma=result.after.sigma,
                    assigned_player_id=result.assigned_player_id,
                )
            )

        self._insert_rows(session, game.id, match_rows, deck_rows)
        session.flush()
        after = tuple(entity_image(entity) for entity in touched.values())

        parameters = {"game_id": game.id, "sequence": game.sequence}
        for result in scored:
            audit.append(self._game_audit(TargetType.PLAYER, result, now, game.submitted_by, parameters))
        for result in commanders:
            audit.append(self._game_audit(TargetType.DECK, result, now, game.submitted_by, parameters))

        snapshot = MatchSnapshot(
            game_id=game.id,
            game_type=game_type,
            injected=False,
            before=before,
            after=after,
            matches=tuple(match_rows),
            deck_matches=tuple(deck_rows),
            actor=game.submitted_by,
            created_at=now,
        )
        player_results = scored if game_type is GameType.PLAYER else commanders
        result = SubmissionResult(
            game_id=game.id,
            game_type=game_type,
            sequence=game.sequence,
            injected=False,
            participants=tuple(self._participant_result(item) for item in player_results),
            commanders=tuple(self._participant_result(item) for item in commanders)
            if game_type is GameType.PLAYER
            else (),
        )
        return result, snapshot

    def _inject_game(
        self,
        session: Session,
        game: Game,
        game_type: GameType,
        participants: Sequence[Participant],
        display_names: dict[str, str],
        audit: list[AuditEntry],
    ) -> tuple[SubmissionResult, MatchSnapshot]:
        """Insert a game into the middle of history and replay everything after it."""
        touched: dict[tuple[TargetType, str], RatedEntity] = {}
        match_rows: list[MatchRow] = []
        deck_rows: list[MatchRow] = []

        if game_type is GameType.PLAYER:
            for participant in participants:
                player = self.entities.get_or_create_player(session, participant.entity_id)
                participant = self._with_default_deck(participant, player)
                touched[(TargetType.PLAYER, player.id)] = player
                if participant.deck_ref is not None:
                    touched[(TargetType.DECK, participant.deck_ref)] = self.entities.get_or_create_deck(
                        session, participant.deck_ref, display_names.get(participant.deck_ref)
                    )
                match_rows.append(self._placeholder_row(participant, deck_ref=participant.deck_ref))
        else:
            for participant in participants:
                touched[(TargetType.DECK, participant.entity_id)] = self.entities.get_or_create_deck(
                    session, participant.entity_id, display_names.get(participant.entity_id)
                )
                deck_rows.append(self._placeholder_row(participant))

        before = {key: entity_image(entity) for key, entity in touched.items()}
        self._insert_rows(session, game.id, match_rows, deck_rows)
        session.flush()

        summaries, replay_audit = self.replayer.replay(session, _replay_targets(game_type))
        audit.extend(replay_audit)
        session.flush()

        after: dict[tuple[TargetType, str], EntityImage] = {}
        for key in before:
            entity = self.entities.get(session, key[0], key[1])
            if entity is not None:
                after[key] = entity_image(entity)

        stored_matches = tuple(self._match_row(row) for row in self.games.matches_for(session, game.id))
        stored_decks = tuple(self._deck_match_row(row) for row in self.games.deck_matches_for(session, game.id))
        snapshot = MatchSnapshot(
            game_id=game.id,
            game_type=game_type,
            injected=True,
            before=tuple(before.values()),
            after=tuple(after.values()),
            matches=stored_matches,
            deck_matches=stored_decks,
            actor=game.submitted_by,
            created_at=game.created_at,
        )

        rows = stored_matches if game_type is GameType.PLAYER else stored_decks
        target_type = TargetType.PLAYER if game_type is GameType.PLAYER else TargetType.DECK
        participant_results = tuple(
            ParticipantResult(
                entity_id=row.entity_id,
                outcome=row.outcome,
                turn_order=row.turn_order,
                before=before[(target_type, row.entity_id)].state,
                after=after[(target_type, row.entity_id)].state,
            )
            for row in rows
        )
        commander_results = ()
        if game_type is GameType.PLAYER:
            commander_results = tuple(
                ParticipantResult(
                    entity_id=row.entity_id,
                    outcome=row.outcome,
                    turn_order=row.turn_order,
                    before=before[(TargetType.DECK, row.entity_id)].state,
                    after=after[(TargetType.DECK, row.entity_id)].state,
                    assigned_player_id=row.assigned_player_id,
                )
                for row in stored_decks
                if (TargetType.DECK, row.entity_id) in after
            )
        result = SubmissionResult(
            game_id=game.id,
            game_type=game_type,
            sequence=game.sequence,
            injected=True,
            participants=participant_results,
            commanders=commander_results,
            warnings=tuple(warning for summary in summaries for warning in summary.warnings),
        )
        return result, snapshot

    # -- manual edits -------------------------------------------------------

    def override_rating(
        self,
        target_type: TargetType | str,
        target_id: str,
        *,
        mu: float | None = None,
        sigma: float | None = None,
        elo: float | None = None,
        wld: tuple[int, int, int] | str | None = None,
        actor: str | None = None,
        reason: str | None = None,
    ) -> ChangeSummary:
        """Set rating fields or W/L/D of one entity directly.

        An Elo override resets sigma to the prior. Replays rebuild ratings
        from game history, so an override only lasts until the next replay.
        """
        target_type = TargetType(target_type)
        if mu is None and sigma is None and elo is None and wld is None:
            raise ValidationError("Nothing to override: pass mu, sigma, elo or wld")
        if elo is not None and (mu is not None or sigma is not None):
            raise ValidationError("An elo override cannot be combined with mu or sigma")
        if sigma is not None and sigma <= 0.0:
            raise ValidationError(f"sigma must be > 0, got {sigma}")
        counts = parse_wld(wld) if isinstance(wld, str) else wld
        if counts is not None and min(counts) < 0:
            raise ValidationError(f"W/L/D values must be >= 0, got {counts}")
        entity_id = normalize_deck_name(target_id) if target_type is TargetType.DECK else target_id

        with self._lock:
            with self._session() as session:
                entity = self.entities.get(session, target_type, entity_id)
                if entity is None:
                    raise NotFoundError(f"{target_type.value.title()} {entity_id} not found")

                before = entity_image(entity)
                new_mu, new_sigma = entity.mu, entity.sigma
                if elo is not None:
                    new_mu, new_sigma = mu_for_elo_override(elo)
                if mu is not None:
                    new_mu = mu
                if sigma is not None:
                    new_sigma = sigma
                entity.mu = new_mu
                entity.sigma = new_sigma
                if counts is not None:
                    entity.wins, entity.losses, entity.draws = counts
                session.flush()
                after = entity_image(entity)

                only_counts = mu is None and sigma is None and elo is None
                change_type = ChangeType.WLD_ADJUSTMENT if only_counts else ChangeType.MANUAL
                now = self.clock()
                snapshot = OverrideSnapshot(
                    change=RatingOverride(before=before, after=after, change_type=change_type),
                    actor=actor,
                    reason=reason,
                    created_at=now,
                )
                entry = AuditEntry(
                    target_type=target_type,
                    target_id=entity_id,
                    change_type=change_type,
                    old=before.state,
                    new=after.state,
                    created_at=now,
                    actor=actor,
                    display_name=self._display_name(entity),
                    parameters={
                        key: value
                        for key, value in (("mu", mu), ("sigma", sigma), ("elo", elo), ("wld", counts))
                        if value is not None
                    },
                    reason=reason,
                )

            self.ledger.push(snapshot)
            self.audit_log.append([entry])

        description = describe(snapshot)
        logger.info("Applied %s", description)
        return ChangeSummary(
            description=description,
            target_type=target_type,
            target_id=entity_id,
            change_type=change_type,
            before=before.state,
            after=after.state,
        )

    def set_deck_assignment(
        self,
        player_id: str,
        deck_name: str | None,
        *,
        game_id: str | None = None,
        all_games: bool = False,
        actor: str | None = None,
    ) -> EditResult:
        """Assign the deck a player piloted.

        Without ``game_id`` only the player's default for future games
        changes. With ``game_id`` that game's row is rewritten; with
        ``all_games`` the default and every row are. Rewriting history
        replays deck ratings. ``None`` or ``"nocommander"`` clears it.
        """
        if game_id is not None and all_games:
            raise ValidationError("Pass either a game id or all_games, not both")
        deck_id = None
        if deck_name is not None:
            deck_id = normalize_deck_name(deck_name)
            if not deck_id:
                raise ValidationError(f"Deck name '{deck_name}' is empty after normalization")
            if deck_id == NO_DECK:
                deck_id = None

        with self._lock:
            audit: list[AuditEntry] = []
            with self._session() as session:
                if game_id is not None:
                    game = self.games.get(session, game_id)
                    if game is None or game.status != GameStatus.CONFIRMED.value:
                        raise NotFoundError(f'Game ID "{game_id}" not found or is not confirmed')
                    if game.game_type != GameType.PLAYER.value:
                        raise ValidationError(f"Game {game_id} is a deck game; decks are assigned in player games")
                    rows = [row for row in self.games.matches_for(session, game_id) if row.player_id == player_id]
                    if not rows:
                        raise NotFoundError(f"Player {player_id} did not play in game {game_id}")
                    player = self.entities.get_player(session, player_id)
                    if player is None:
                        raise NotFoundError(f"Player {player_id} not found")
                else:
                    player = self.entities.get_or_create_player(session, player_id)
                    rows = self.games.matches_for_player(session, player_id) if all_games else []

                if deck_id is not None:
                    self.entities.get_or_create_deck(session, deck_id, deck_name)

                before_default = player.default_deck
                if game_id is None:
                    player.default_deck = deck_id
                before_refs = tuple((row.game_id, row.deck_ref) for row in rows)
                for row in rows:
                    row.deck_ref = deck_id
                after_refs = tuple((row.game_id, row.deck_ref) for row in rows)

                change = DeckAssignmentChange(
                    player_id=player_id,
                    game_id=game_id,
                    all_games=all_games,
                    before_default=before_default,
                    after_default=player.default_deck,
                    before_refs=before_refs,
                    after_refs=after_refs,
                )
                warnings = self._replay_for_change(session, change, audit)
                snapshot = OverrideSnapshot(change=change, actor=actor, reason=None, created_at=self.clock())

            self.ledger.push(snapshot)
            self.audit_log.append(audit)

        description = describe(snapshot)
        logger.info("Applied %s", description)
        return EditResult(description=description, warnings=warnings)

    def set_turn_order(
        self,
        game_id: str,
        entity_id: str,
        turn_order: int,
        *,
        occurrence: int = 0,
        actor: str | None = None,
    ) -> EditResult:
        """Set (or with ``0`` remove) one participant's turn order in a game.

        ``occurrence`` picks among repeated decks in a deck game.
        """
        new_value = None if turn_order == 0 else turn_order
        if new_value is not None:
            validate_turn_order(new_value)

        with self._lock:
            with self._session() as session:
                game = self._confirmed_game(session, game_id)
                game_type = GameType(game.game_type)
                if game_type is GameType.DECK:
                    entity_id = normalize_deck_name(entity_id)
                rows = self._participation_rows(session, game)
                matching = [row for row in rows if self._row_entity(row) == entity_id]
                if occurrence >= len(matching):
                    raise NotFoundError(f"{entity_id} did not play in game {game_id}")
                target = matching[occurrence]
                if new_value is not None and any(
                    row is not target and row.turn_order == new_value for row in rows
                ):
                    raise ValidationError(
                        f"Turn order {new_value} is already assigned to another player in game {game_id}"
                    )

                change = TurnOrderChange(
                    entity_id=entity_id,
                    occurrence=occurrence,
                    before=target.turn_order,
                    after=new_value,
                )
                edit = TurnOrderEdit(game_id=game_id, game_type=game_type, changes=(change,))
                self._apply_turn_orders(session, edit, use_after=True)
                snapshot = OverrideSnapshot(change=edit, actor=actor, reason=None, created_at=self.clock())

            self.ledger.push(snapshot)

        description = describe(snapshot)
        logger.info("Applied %s", description)
        return EditResult(description=description)

    def remove_turn_orders(self, game_id: str, *, actor: str | None = None) -> EditResult:
        """Clear every turn order in one game."""
        with self._lock:
            with self._session() as session:
                game = self._confirmed_game(session, game_id)
                seen: dict[str, int] = {}
                changes: list[TurnOrderChange] = []
                for row in self._participation_rows(session, game):
                    entity_id = self._row_entity(row)
                    occurrence = seen.get(entity_id, 0)
                    seen[entity_id] = occurrence + 1
                    if row.turn_order is not None:
                        changes.append(TurnOrderChange(entity_id, occurrence, before=row.turn_order, after=None))
                if not changes:
                    raise ValidationError(f"No turn orders are set in game {game_id}")

                edit = TurnOrderEdit(
                    game_id=game_id,
                    game_type=GameType(game.game_type),
                    changes=tuple(changes),
                    bulk=True,
                )
                self._apply_turn_orders(session, edit, use_after=True)
                snapshot = OverrideSnapshot(change=edit, actor=actor, reason=None, created_at=self.clock())

            self.ledger.push(snapshot)

        return EditResult(description=describe(snapshot))

    def toggle_game_active(self, game_id: str, active: bool, *, actor: str | None = None) -> EditResult:
        """Include or exclude a confirmed game from history and replay."""
        with self._lock:
            audit: list[AuditEntry] = []
            with self._session() as session:
                game = self.games.get(session, game_id)
                if game is None or game.status != GameStatus.CONFIRMED.value:
                    raise NotFoundError(f'Game ID "{game_id}" not found or is not confirmed')
                if game.active == active:
                    state = "active" if active else "inactive"
                    raise ValidationError(f"Game {game_id} is already {state}")

                change = ActiveToggle(
                    game_id=game_id,
                    game_type=GameType(game.game_type),
                    before=game.active,
                    after=active,
                )
                game.active = active
                warnings = self._replay_for_change(session, change, audit)
                snapshot = OverrideSnapshot(change=change, actor=actor, reason=None, created_at=self.clock())

            self.ledger.push(snapshot)
            self.audit_log.append(audit)

        description = describe(snapshot)
        logger.info("Applied %s", description)
        return EditResult(description=description, warnings=warnings)

    def edit_game_results(
        self,
        game_id: str,
        participants: Sequence[Participant],
        *,
        actor: str | None = None,
        reason: str | None = None,
    ) -> EditResult:
        """Replace who took part in a confirmed game and how they finished.

        The new participants are validated like a submission. A player who
        stays in the game keeps their deck reference unless a new one is
        given. Ratings are rebuilt by a replay.
        """
        with self._lock:
            audit: list[AuditEntry] = []
            with self._session() as session:
                game = self._confirmed_game(session, game_id)
                game_type = GameType(game.game_type)
                normalized, display_names = self._normalize_participants(game_type, participants)
                validate_participants(game_type, normalized, self.config.limits)
                self._check_restricted(session, game_type, normalized)

                if game_type is GameType.PLAYER:
                    before_rows = tuple(self._match_row(row) for row in self.games.matches_for(session, game_id))
                    previous_decks = {row.entity_id: row.deck_ref for row in before_rows}
                    after_rows = []
                    for participant in normalized:
                        deck_ref = participant.deck_ref or previous_decks.get(participant.entity_id)
                        if deck_ref is None:
                            player = self.entities.get_player(session, participant.entity_id)
                            deck_ref = None if player is None else player.default_deck
                        after_rows.append(self._placeholder_row(participant, deck_ref=deck_ref))
                else:
                    before_rows = tuple(
                        self._deck_match_row(row) for row in self.games.deck_matches_for(session, game_id)
                    )
                    after_rows = [self._placeholder_row(participant) for participant in normalized]

                change = GameResultsEdit(
                    game_id=game_id,
                    game_type=game_type,
                    before=before_rows,
                    after=tuple(after_rows),
                )
                self._write_results(session, change, use_after=True, display_names=display_names)
                warnings = self._replay_for_change(session, change, audit)
                snapshot = OverrideSnapshot(change=change, actor=actor, reason=reason, created_at=self.clock())

            self.ledger.push(snapshot)
            self.audit_log.append(audit)

        description = describe(snapshot)
        logger.info("Applied %s", description)
        return EditResult(description=description, warnings=warnings)

    def set_player_restricted(self, player_id: str, restricted: bool) -> EntityView:
        """Allow or bar a player from game submissions (not undoable)."""
        with self._lock:
            with self._session() as session:
                player = self.entities.get_or_create_player(session, player_id)
                player.restricted = restricted
                session.flush()
                view = self._entity_view(player)
        logger.info("Player %s restricted=%s", player_id, restricted)
        return view

    # -- undo / redo --------------------------------------------------------

    def undo(self) -> LedgerResult | None:
        """Revert the most recent mutation; ``None`` when there is nothing to undo."""
        with self._lock:
            snapshot = self.ledger.pop_undo()
            if snapshot is None:
                return None
            try:
                warnings = self._restore(snapshot, ChangeType.UNDO)
            except Exception:
                self.ledger.push_undo(snapshot)
                raise
            self.ledger.push_redo(snapshot)

        description = describe(snapshot)
        logger.info("Undid %s", description)
        return LedgerResult(description=description, snapshot=snapshot, warnings=warnings)

    def redo(self) -> LedgerResult | None:
        """Re-apply the most recently undone mutation; ``None`` when there is nothing to redo."""
        with self._lock:
            snapshot = self.ledger.pop_redo()
            if snapshot is None:
                return None
            try:
                warnings = self._restore(snapshot, ChangeType.REDO)
            except Exception:
                self.ledger.push_redo(snapshot)
                raise
            self.ledger.push_undo(snapshot)

        description = describe(snapshot)
        logger.info("Redid %s", description)
        return LedgerResult(description=description, snapshot=snapshot, warnings=warnings)

    def _restore(self, snapshot: Snapshot, direction: ChangeType) -> tuple[str, ...]:
        audit: list[AuditEntry] = []
        with self._session() as session:
            if isinstance(snapshot, MatchSnapshot):
                warnings = self._restore_match(session, snapshot, direction, audit)
            elif isinstance(snapshot, OverrideSnapshot):
                warnings = self._restore_change(session, snapshot.change, direction, audit)
            elif isinstance(snapshot, DecaySnapshot):
                use_after = direction is ChangeType.REDO
                images = [entry.after if use_after else entry.before for entry in snapshot.entries]
                self._restore_images(session, images, audit, change_type=direction, parameters={"decay": True})
                warnings = ()
            else:
                assert_never(snapshot)
        self.audit_log.append(audit)
        return warnings

    def _restore_match(
        self,
        session: Session,
        snapshot: MatchSnapshot,
        direction: ChangeType,
        audit: list[AuditEntry],
    ) -> tuple[str, ...]:
        use_after = direction is ChangeType.REDO
        game = self.games.get(session, snapshot.game_id)
        if game is None:
            raise NotFoundError(f"Game {snapshot.game_id} no longer exists")

        if use_after:
            game.status = GameStatus.CONFIRMED.value
            session.flush()
            for image in snapshot.after:
                self.entities.get_or_create(session, image.target_type, image.entity_id, image.display_name)
            self._insert_rows(session, game.id, snapshot.matches, snapshot.deck_matches)
        else:
            game.status = GameStatus.UNDONE.value
            self.games.delete_participation(session, game.id)
        session.flush()

        if snapshot.injected:
            return self._replay(session, _replay_targets(snapshot.game_type), audit)

        images = snapshot.after if use_after else snapshot.before
        self._restore_images(session, images, audit, change_type=direction, parameters={"game_id": snapshot.game_id})
        if not use_after:
            for target_type in TargetType:
                touched = {image.entity_id for image in images if image.target_type is target_type}
                removed = self.entities.delete_unreferenced(session, target_type, touched)
                if removed:
                    logger.info("Removed %s entities left without games: %s", target_type.value, ", ".join(removed))
        return ()

    def _restore_change(
        self,
        session: Session,
        change: OverrideChange,
        direction: ChangeType,
        audit: list[AuditEntry],
    ) -> tuple[str, ...]:
        use_after = direction is ChangeType.REDO
        if isinstance(change, RatingOverride):
            image = change.after if use_after else change.before
            self._restore_images(
                session, [image], audit, change_type=direction, parameters={"override": change.change_type.value}
            )
            return ()
        if isinstance(change, DeckAssignmentChange):
            player = self.entities.get_or_create_player(session, change.player_id)
            player.default_deck = change.after_default if use_after else change.before_default
            refs = dict(change.after_refs if use_after else change.before_refs)
            for row in self.games.matches_for_player(session, change.player_id):
                if row.game_id in refs:
                    row.deck_ref = refs[row.game_id]
            for deck_id in refs.values():
                if deck_id is not None:
                    self.entities.get_or_create_deck(session, deck_id)
            return self._replay_for_change(session, change, audit)
        if isinstance(change, TurnOrderEdit):
            self._apply_turn_orders(session, change, use_after=use_after)
            return ()
        if isinstance(change, ActiveToggle):
            game = self.games.get(session, change.game_id)
            if game is None:
                raise NotFoundError(f"Game {change.game_id} no longer exists")
            game.active = change.after if use_after else change.before
            return self._replay_for_change(session, change, audit)
        if isinstance(change, GameResultsEdit):
            self._write_results(session, change, use_after=use_after)
            return self._replay_for_change(session, change, audit)
        assert_never(change)

    def _replay_for_change(self, session: Session, change: OverrideChange, audit: list[AuditEntry]) -> tuple[str, ...]:
        if isinstance(change, DeckAssignmentChange):
            if not change.touches_history:
                return ()
            return self._replay(session, (TargetType.DECK,), audit)
        if isinstance(change, (ActiveToggle, GameResultsEdit)):
            return self._replay(session, _replay_targets(change.game_type), audit)
        return ()

    # -- decay --------------------------------------------------------------

    def apply_decay(self, *, now: datetime | None = None, triggered_by: str | None = None) -> DecaySummary:
        """Decay every inactive player up to ``now`` as one undoable step."""
        at = now or self.clock()
        with self._lock:
            audit: list[AuditEntry] = []
            entries: list[DecayEntry] = []
            with self._session() as session:
                for player in self.entities.players(session):
                    step = compute_decay(
                        self.decay_policy,
                        mu=player.mu,
                        sigma=player.sigma,
                        games_played=player.games_played,
                        last_active=player.last_active,
                        days_applied=player.decay_days_applied,
                        now=at,
                    )
                    if step is None:
                        continue
                    before = entity_image(player)
                    player.mu = step.after_mu
                    player.sigma = step.after_sigma
                    player.decay_days_applied = step.days_applied
                    after = entity_image(player)
                    entries.append(DecayEntry(before=before, after=after))
                    audit.append(
                        AuditEntry(
                            target_type=TargetType.PLAYER,
                            target_id=player.id,
                            change_type=ChangeType.DECAY,
                            old=before.state,
                            new=after.state,
                            created_at=at,
                            actor=triggered_by,
                            parameters={
                                "days_since_last_played": step.days_inactive,
                                "grace_days": self.decay_policy.grace_days,
                                "decay_amount": step.old_elo - step.new_elo,
                                "elo_cutoff": self.decay_policy.elo_cutoff,
                                "triggered_by": triggered_by,
                            },
                            track_counts=False,
                        )
                    )

            if entries:
                self.ledger.push(DecaySnapshot(entries=tuple(entries), triggered_by=triggered_by, created_at=at))
                self.audit_log.append(audit)

        logger.info("Decay sweep affected %d players", len(entries))
        return DecaySummary(entries=tuple(entries))

    def _decay_before_game(self, player: Player, at: datetime, game_id: str, audit: list[AuditEntry]) -> None:
        step = compute_decay(
            self.decay_policy,
            mu=player.mu,
            sigma=player.sigma,
            games_played=player.games_played,
            last_active=player.last_active,
            days_applied=player.decay_days_applied,
            now=at,
        )
        if step is None:
            return
        old = entity_state(player)
        player.mu = step.after_mu
        player.sigma = step.after_sigma
        player.decay_days_applied = step.days_applied
        audit.append(
            AuditEntry(
                target_type=TargetType.PLAYER,
                target_id=player.id,
                change_type=ChangeType.DECAY,
                old=old,
                new=entity_state(player),
                created_at=at,
                parameters={"trigger": "game", "game_id": game_id, "days_since_last_played": step.days_inactive},
                track_counts=False,
            )
        )

    # -- maintenance --------------------------------------------------------

    def recalculate(self, target_types: Sequence[TargetType] | None = None) -> list[ReplaySummary]:
        """Rebuild ratings from history without recording an undo step."""
        targets = tuple(target_types or (TargetType.PLAYER, TargetType.DECK))
        with self._lock:
            with self._session() as session:
                summaries, audit = self.replayer.replay(session, targets)
            self.audit_log.append(audit)
        return summaries

    def renormalize_sequences(self) -> int:
        with self._lock:
            with self._session() as session:
                return self.sequencer.renormalize(session)

    # -- queries ------------------------------------------------------------

    def get_entity(self, target_type: TargetType | str, entity_id: str) -> EntityView | None:
        target_type = TargetType(target_type)
        if target_type is TargetType.DECK:
            entity_id = normalize_deck_name(entity_id)
        with self._session_factory() as session:
            entity = self.entities.get(session, target_type, entity_id)
            return None if entity is None else self._entity_view(entity)

    def predict(self, target_type: TargetType | str, entity_ids: Sequence[str]) -> list[WinPrediction]:
        """Win chances from current ratings, in the order of ``entity_ids``.

        Unknown entities are predicted at the prior without being created.
        """
        target_type = TargetType(target_type)
        if target_type is TargetType.DECK:
            ids = [normalize_deck_name(entity_id) for entity_id in entity_ids]
        else:
            ids = [entity_id.strip() for entity_id in entity_ids]
        if len(ids) < 2:
            raise ValidationError("At least two entities are needed for a prediction")
        if len(set(ids)) != len(ids):
            raise ValidationError("Each entity can appear only once in a prediction")

        params = self.calculator.params
        with self._session_factory() as session:
            states = []
            for entity_id in ids:
                entity = self.entities.get(session, target_type, entity_id)
                if entity is None:
                    states.append((RatingState(mu=params.initial_mu, sigma=params.initial_sigma), False))
                else:
                    states.append((entity_state(entity), True))

        probabilities = self.calculator.predict_win([(state.mu, state.sigma) for state, _ in states])
        return [
            WinPrediction(entity_id=entity_id, elo=state.elo, probability=probability, rated=rated)
            for entity_id, (state, rated), probability in zip(ids, states, probabilities)
        ]

    def get_audit_history(
        self,
        target_type: TargetType | str,
        target_id: str,
        limit: int | None = None,
    ) -> list[RatingChange]:
        """Audit entries for one entity, newest first."""
        target_type = TargetType(target_type)
        if target_type is TargetType.DECK:
            target_id = normalize_deck_name(target_id)
        with self._session_factory() as session:
            return self.audit_repository.history(
                session,
                target_type=target_type,
                target_id=target_id,
                limit=limit or self.config.audit_history_limit,
            )

    def get_game(self, game_id: str) -> Game | None:
        with self._session_factory() as session:
            return self.games.get(session, game_id)

    def game_rows(self, game_id: str) -> tuple[list[Match], list[DeckMatch]]:
        with self._session_factory() as session:
            return self.games.matches_for(session, game_id), self.games.deck_matches_for(session, game_id)

    # -- helpers ------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._session_factory() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def _replay(self, session: Session, targets: Sequence[TargetType], audit: list[AuditEntry]) -> tuple[str, ...]:
        summaries, replay_audit = self.replayer.replay(session, targets)
        audit.extend(replay_audit)
        warnings = tuple(warning for summary in summaries for warning in summary.warnings)
        for warning in warnings:
            logger.warning("Replay warning: %s", warning)
        return warnings

    def _normalize_participants(
        self,
        game_type: GameType,
        participants: Sequence[Participant],
    ) -> tuple[list[Participant], dict[str, str]]:
        """Canonical deck ids for participants; also returns id -> submitted display name."""
        display_names: dict[str, str] = {}
        normalized: list[Participant] = []
        for participant in participants:
            outcome = Outcome(participant.outcome)
            if game_type is GameType.DECK:
                deck_id = normalize_deck_name(participant.entity_id)
                if not deck_id:
                    raise ValidationError(f"Deck name '{participant.entity_id}' is empty after normalization")
                display_names.setdefault(deck_id, participant.entity_id)
                normalized.append(Participant(deck_id, outcome, participant.turn_order))
                continue

            deck_ref = None
            if participant.deck_ref is not None:
                deck_ref = normalize_deck_name(participant.deck_ref)
                if deck_ref == NO_DECK or not deck_ref:
                    deck_ref = None
                else:
                    display_names.setdefault(deck_ref, participant.deck_ref)
            normalized.append(Participant(participant.entity_id.strip(), outcome, participant.turn_order, deck_ref))
        return normalized, display_names

    def _check_restricted(self, session: Session, game_type: GameType, participants: Sequence[Participant]) -> None:
        if game_type is not GameType.PLAYER:
            return
        for participant in participants:
            player = self.entities.get_player(session, participant.entity_id)
            if player is not None and player.restricted:
                raise ValidationError(f"Player {participant.entity_id} is restricted from league games")

    @staticmethod
    def _with_default_deck(participant: Participant, player: Player) -> Participant:
        if participant.deck_ref is not None or player.default_deck is None:
            return participant
        return Participant(participant.entity_id, participant.outcome, participant.turn_order, player.default_deck)

    def _insert_rows(
        self,
        session: Session,
        game_id: str,
        match_rows: Sequence[MatchRow],
        deck_rows: Sequence[MatchRow],
    ) -> None:
        session.add_all(
            Match(
                game_id=game_id,
                player_id=row.entity_id,
                outcome=row.outcome.value,
                turn_order=row.turn_order,
                mu=row.mu,
                sigma=row.sigma,
                deck_ref=row.deck_ref,
            )
            for row in match_rows
        )
        session.add_all(
            DeckMatch(
                game_id=game_id,
                deck_id=row.entity_id,
                outcome=row.outcome.value,
                turn_order=row.turn_order,
                mu=row.mu,
                sigma=row.sigma,
                assigned_player_id=row.assigned_player_id,
            )
            for row in deck_rows
        )

    def _placeholder_row(self, participant: Participant, *, deck_ref: str | None = None) -> MatchRow:
        """Row at the prior rating; a replay fills in the real values."""
        params = self.calculator.params
        return MatchRow(
            entity_id=participant.entity_id,
            outcome=participant.outcome,
            turn_order=participant.turn_order,
            mu=params.initial_mu,
            sigma=params.initial_sigma,
            deck_ref=deck_ref,
        )

    def _write_results(
        self,
        session: Session,
        change: GameResultsEdit,
        *,
        use_after: bool,
        display_names: dict[str, str] | None = None,
    ) -> None:
        rows = change.after if use_after else change.before
        names = display_names or {}
        self.games.delete_participation(session, change.game_id)
        session.flush()
        if change.game_type is GameType.PLAYER:
            for row in rows:
                self.entities.get_or_create_player(session, row.entity_id)
                if row.deck_ref is not None:
                    self.entities.get_or_create_deck(session, row.deck_ref, names.get(row.deck_ref))
            self._insert_rows(session, change.game_id, rows, ())
        else:
            for row in rows:
                self.entities.get_or_create_deck(session, row.entity_id, names.get(row.entity_id))
            self._insert_rows(session, change.game_id, (), rows)
        session.flush()

    def _restore_images(
        self,
        session: Session,
        images: Sequence[EntityImage],
        audit: list[AuditEntry],
        *,
        change_type: ChangeType,
        parameters: dict[str, object],
    ) -> None:
        now = self.clock()
        for image in images:
            entity = self.entities.get_or_create(session, image.target_type, image.entity_id, image.display_name)
            old = entity_state(entity)
            apply_image(entity, image)
            audit.append(
                AuditEntry(
                    target_type=image.target_type,
                    target_id=image.entity_id,
                    change_type=change_type,
                    old=old,
                    new=image.state,
                    created_at=now,
                    parameters=dict(parameters),
                )
            )
        session.flush()

    def _confirmed_game(self, session: Session, game_id: str) -> Game:
        game = self.games.get(session, game_id)
        if game is None or game.status != GameStatus.CONFIRMED.value:
            raise NotFoundError(f'Game ID "{game_id}" not found or is not confirmed')
        return game

    def _participation_rows(self, session: Session, game: Game) -> list[Match] | list[DeckMatch]:
        if game.game_type == GameType.PLAYER.value:
            return self.games.matches_for(session, game.id)
        return self.games.deck_matches_for(session, game.id)

    @staticmethod
    def _row_entity(row: Match | DeckMatch) -> str:
        return row.player_id if isinstance(row, Match) else row.deck_id

    def _apply_turn_orders(self, session: Session, edit: TurnOrderEdit, *, use_after: bool) -> None:
        game = self.games.get(session, edit.game_id)
        if game is None:
            raise NotFoundError(f"Game {edit.game_id} no longer exists")
        rows = self._participation_rows(session, game)
        commander_rows = self.games.deck_matches_for(session, game.id) if edit.game_type is GameType.PLAYER else []
        for change in edit.changes:
            matching = [row for row in rows if self._row_entity(row) == change.entity_id]
            if change.occurrence >= len(matching):
                raise NotFoundError(f"{change.entity_id} did not play in game {edit.game_id}")
            value = change.after if use_after else change.before
            matching[change.occurrence].turn_order = value
            # Commander rows of a player game mirror the pilot's seat.
            for commander_row in commander_rows:
                if commander_row.assigned_player_id == change.entity_id:
                    commander_row.turn_order = value
        session.flush()

    def _display_name(self, entity: RatedEntity) -> str:
        if isinstance(entity, Deck):
            return entity.display_name
        return f"Player {entity.id}"

    def _entity_view(self, entity: RatedEntity) -> EntityView:
        if isinstance(entity, Player):
            return EntityView(
                target_type=TargetType.PLAYER,
                entity_id=entity.id,
                display_name=self._display_name(entity),
                mu=entity.mu,
                sigma=entity.sigma,
                elo=entity_state(entity).elo,
                wins=entity.wins,
                losses=entity.losses,
                draws=entity.draws,
                last_active=entity.last_active,
                default_deck=entity.default_deck,
                restricted=entity.restricted,
            )
        return EntityView(
            target_type=TargetType.DECK,
            entity_id=entity.id,
            display_name=entity.display_name,
            mu=entity.mu,
            sigma=entity.sigma,
            elo=entity_state(entity).elo,
            wins=entity.wins,
            losses=entity.losses,
            draws=entity.draws,
        )

    @staticmethod
    def _participant_result(result: ScoredParticipant) -> ParticipantResult:
        return ParticipantResult(
            entity_id=result.entity_id,
            outcome=result.outcome,
            turn_order=result.turn_order,
            before=result.before,
            after=result.after,
            assigned_player_id=result.assigned_player_id,
        )

    @staticmethod
    def _game_audit(
        target_type: TargetType,
        result: ScoredParticipant,
        now: datetime,
        actor: str | None,
        parameters: dict[str, object],
    ) -> AuditEntry:
        return AuditEntry(
            target_type=target_type,
            target_id=result.entity_id,
            change_type=ChangeType.GAME,
            old=result.before,
            new=result.after,
            created_at=now,
            actor=actor,
            parameters={**parameters, "outcome": result.outcome.value, "pre_bonus_elo": result.pre_bonus_elo},
        )

    @staticmethod
    def _match_row(row: Match) -> MatchRow:
        return MatchRow(
            entity_id=row.player_id,
            outcome=Outcome(row.outcome),
            turn_order=row.turn_order,
            mu=row.mu,
            sigma=row.sigma,
            deck_ref=row.deck_ref,
        )

    @staticmethod
    def _deck_match_row(row: DeckMatch) -> MatchRow:
        return MatchRow(
            entity_id=row.deck_id,
            outcome=Outcome(row.outcome),
            turn_order=row.turn_order,
            mu=row.mu,
            sigma=row.sigma,
            assigned_player_id=row.assigned_player_id,
        )
