"""Helpers shared by the database-backed tests."""

from __future__ import annotations

from sqlalchemy import select

from podrank.domain.common import Outcome, Participant
from podrank.models import Deck, DeckMatch, Game, Match, Player


def pod(*entries: tuple[str, str] | tuple[str, str, str]) -> list[Participant]:
    """Participants from ``(id, outcome)`` or ``(id, outcome, deck)`` tuples."""
    participants = []
    for entry in entries:
        deck = entry[2] if len(entry) == 3 else None
        participants.append(Participant(entity_id=entry[0], outcome=Outcome(entry[1]), deck_ref=deck))
    return participants


def league_state(session_factory) -> dict[str, list[tuple]]:
    """Every stored rating field and participation row, in a comparable form."""
    with session_factory() as session:
        players = [
            (p.id, p.mu, p.sigma, p.wins, p.losses, p.draws, p.last_active, p.decay_days_applied, p.default_deck)
            for p in session.execute(select(Player)).scalars()
        ]
        decks = [(d.id, d.mu, d.sigma, d.wins, d.losses, d.draws) for d in session.execute(select(Deck)).scalars()]
        matches = [
            (m.game_id, m.player_id, m.outcome, m.turn_order, m.mu, m.sigma, m.deck_ref)
            for m in session.execute(select(Match)).scalars()
        ]
        deck_matches = [
            (m.game_id, m.deck_id, m.outcome, m.turn_order, m.mu, m.sigma, m.assigned_player_id)
            for m in session.execute(select(DeckMatch)).scalars()
        ]
        games = [(g.id, g.sequence, g.status, g.active) for g in session.execute(select(Game)).scalars()]
    return {
        "players": sorted(players, key=repr),
        "decks": sorted(decks, key=repr),
        "matches": sorted(matches, key=repr),
        "deck_matches": sorted(deck_matches, key=repr),
        "games": sorted(games, key=repr),
    }
