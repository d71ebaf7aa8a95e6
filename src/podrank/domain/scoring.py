"""Game scoring shared by live submission and history replay.

Both paths feed the same inputs through these functions so that a replayed
game always reproduces what the original submission computed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from podrank.domain.calculator import Competitor, PodRatingCalculator
from podrank.domain.common import Outcome, Participant, RatingState


@dataclass(frozen=True)
class ScoredParticipant:
    """Before/after state for one participation row."""

    entity_id: str
    outcome: Outcome
    turn_order: int | None
    before: RatingState
    after: RatingState
    pre_bonus_elo: int
    assigned_player_id: str | None = None


@dataclass(frozen=True)
class DeckEntry:
    deck_id: str
    outcome: Outcome
    turn_order: int | None = None
    assigned_player_id: str | None = None


def score_player_game(
    calculator: PodRatingCalculator,
    participants: Sequence[Participant],
    states: Mapping[str, RatingState],
) -> list[ScoredParticipant]:
    """Rate a player game; every participant must have a state in ``states``."""
    competitors = [
        Competitor(
            key=participant.entity_id,
            mu=states[participant.entity_id].mu,
            sigma=states[participant.entity_id].sigma,
            outcome=participant.outcome,
        )
        for participant in participants
    ]
    updates = calculator.rate(competitors)

    results: list[ScoredParticipant] = []
    for participant, update in zip(participants, updates):
        before = states[participant.entity_id]
        after = before.with_rating(update.post_mu, update.post_sigma).with_outcome(participant.outcome)
        results.append(
            ScoredParticipant(
                entity_id=participant.entity_id,
                outcome=participant.outcome,
                turn_order=participant.turn_order,
                before=before,
                after=after,
                pre_bonus_elo=update.pre_bonus_elo,
            )
        )
    return results


def score_deck_entries(
    calculator: PodRatingCalculator,
    entries: Sequence[DeckEntry],
    states: Mapping[str, RatingState],
    *,
    pad_to: int | None = None,
) -> list[ScoredParticipant]:
    """Rate deck instances, aggregating repeated decks into one new rating.

    Each instance starts from its own copy of the deck's pre-game rating. A
    deck's new rating is the mean mu and the minimum sigma over its instances,
    with the participation bonus applied once afterwards. Win/loss/draw is
    counted per instance. Every returned row of a deck carries the deck's
    final state.
    """
    competitors: list[Competitor] = [
        Competitor(
            key=entry.deck_id,
            mu=states[entry.deck_id].mu,
            sigma=states[entry.deck_id].sigma,
            outcome=entry.outcome,
        )
        for entry in entries
    ]
    ordered_entries: list[DeckEntry | None] = list(entries)
    if pad_to is not None and len(entries) < pad_to:
        used = {entry.turn_order for entry in entries if entry.turn_order is not None}
        free_orders = [order for order in range(1, pad_to + 1) if order not in used]
        for index in range(pad_to - len(entries)):
            competitors.append(calculator.phantom(index))
            ordered_entries.append(None)
        # Phantoms take the free seats; everything is then seated by turn order.
        seats = [entry.turn_order if entry is not None else None for entry in ordered_entries]
        phantom_seats = iter(free_orders)
        seats = [seat if seat is not None else next(phantom_seats, pad_to + 1) for seat in seats]
        order = sorted(range(len(competitors)), key=lambda position: (seats[position], position))
        competitors = [competitors[position] for position in order]
        ordered_entries = [ordered_entries[position] for position in order]

    updates = iter(calculator.rate(competitors, apply_bonus=False))
    instance_updates: list[tuple[DeckEntry, float, float]] = []
    for entry in ordered_entries:
        if entry is None:
            continue
        update = next(updates)
        instance_updates.append((entry, update.post_mu, update.post_sigma))

    finals: dict[str, RatingState] = {}
    pre_bonus: dict[str, int] = {}
    for deck_id in dict.fromkeys(entry.deck_id for entry, _, _ in instance_updates):
        mus = [mu for entry, mu, _ in instance_updates if entry.deck_id == deck_id]
        sigmas = [sigma for entry, _, sigma in instance_updates if entry.deck_id == deck_id]
        mu = sum(mus) / len(mus)
        sigma = min(sigmas)
        state = states[deck_id].with_rating(mu, sigma)
        pre_bonus[deck_id] = state.elo
        state = state.with_rating(calculator.bonus_mu(mu, sigma), sigma)
        for entry, _, _ in instance_updates:
            if entry.deck_id == deck_id:
                state = state.with_outcome(entry.outcome)
        finals[deck_id] = state

    return [
        ScoredParticipant(
            entity_id=entry.deck_id,
            outcome=entry.outcome,
            turn_order=entry.turn_order,
            before=states[entry.deck_id],
            after=finals[entry.deck_id],
            pre_bonus_elo=pre_bonus[entry.deck_id],
            assigned_player_id=entry.assigned_player_id,
        )
        for entry, _, _ in instance_updates
    ]


def commander_entries(participants: Sequence[Participant]) -> list[DeckEntry]:
    """Deck entries for a player game, one per participant that piloted a deck.

    Entries without a turn order are seated by their list position.
    """
    entries: list[DeckEntry] = []
    for position, participant in enumerate(participants, start=1):
        if participant.deck_ref is None:
            continue
        entries.append(
            DeckEntry(
                deck_id=participant.deck_ref,
                outcome=participant.outcome,
                turn_order=participant.turn_order if participant.turn_order is not None else position,
                assigned_player_id=participant.entity_id,
            )
        )
    return entries


def score_commanders(
    calculator: PodRatingCalculator,
    participants: Sequence[Participant],
    states: Mapping[str, RatingState],
) -> list[ScoredParticipant]:
    """Rate the decks piloted in a player game; empty when fewer than two decks are known."""
    entries = commander_entries(participants)
    if len(entries) < 2:
        return []
    options = calculator.options
    pad_to = options.nominal_group_size if options.phantom_padding else None
    scored = score_deck_entries(calculator, entries, states, pad_to=pad_to)
    by_player = {result.assigned_player_id: result for result in scored}
    # Report rows in submission order rather than seat order.
    return [by_player[entry.assigned_player_id] for entry in entries]
