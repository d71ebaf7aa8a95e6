"""ORM models."""

from podrank.models.base import Base
from podrank.models.deck import Deck
from podrank.models.game import Game
from podrank.models.match import DeckMatch, Match
from podrank.models.player import Player
from podrank.models.rating_change import RatingChange

__all__ = [
    "Base",
    "Deck",
    "DeckMatch",
    "Game",
    "Match",
    "Player",
    "RatingChange",
]
