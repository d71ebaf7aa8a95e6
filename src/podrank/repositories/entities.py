"""Player and deck persistence."""

from __future__ import annotations

from collections.abc import Collection

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from podrank.domain.common import RatingState, TargetType
from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA
from podrank.domain.snapshots import EntityImage
from podrank.models import Deck, DeckMatch, Match, Player

RatedEntity = Player | Deck


def model_for(target_type: TargetType) -> type[Player] | type[Deck]:
    return Player if target_type is TargetType.PLAYER else Deck


def entity_state(entity: RatedEntity) -> RatingState:
    return RatingState(
        mu=entity.mu,
        sigma=entity.sigma,
        wins=entity.wins,
        losses=entity.losses,
        draws=entity.draws,
    )


def entity_image(entity: RatedEntity) -> EntityImage:
    """Capture every rating field of ``entity``."""
    if isinstance(entity, Player):
        return EntityImage(
            target_type=TargetType.PLAYER,
            entity_id=entity.id,
            mu=entity.mu,
            sigma=entity.sigma,
            wins=entity.wins,
            losses=entity.losses,
            draws=entity.draws,
            last_active=entity.last_active,
            decay_days_applied=entity.decay_days_applied,
        )
    return EntityImage(
        target_type=TargetType.DECK,
        entity_id=entity.id,
        mu=entity.mu,
        sigma=entity.sigma,
        wins=entity.wins,
        losses=entity.losses,
        draws=entity.draws,
        display_name=entity.display_name,
    )


def apply_image(entity: RatedEntity, image: EntityImage) -> None:
    """Write a captured image back onto ``entity``."""
    entity.mu = image.mu
    entity.sigma = image.sigma
    entity.wins = image.wins
    entity.losses = image.losses
    entity.draws = image.draws
    if isinstance(entity, Player):
        entity.last_active = image.last_active
        entity.decay_days_applied = image.decay_days_applied


def apply_state(entity: RatedEntity, state: RatingState) -> None:
    entity.mu = state.mu
    entity.sigma = state.sigma
    entity.wins = state.wins
    entity.losses = state.losses
    entity.draws = state.draws


class EntityRepository:
    """Lookups and lifecycle for players and decks."""

    def get(self, session: Session, target_type: TargetType, entity_id: str) -> RatedEntity | None:
        return session.get(model_for(target_type), entity_id)

    def get_player(self, session: Session, player_id: str) -> Player | None:
        return session.get(Player, player_id)

    def get_or_create_player(self, session: Session, player_id: str) -> Player:
        player = session.get(Player, player_id)
        if player is None:
            player = Player(
                id=player_id,
                mu=PRIOR_MU,
                sigma=PRIOR_SIGMA,
                wins=0,
                losses=0,
                draws=0,
                last_active=None,
                decay_days_applied=0,
                default_deck=None,
                restricted=False,
            )
            session.add(player)
            session.flush()
        return player

    def get_or_create_deck(self, session: Session, deck_id: str, display_name: str | None = None) -> Deck:
        deck = session.get(Deck, deck_id)
        if deck is None:
            deck = Deck(
                id=deck_id,
                display_name=display_name or deck_id,
                mu=PRIOR_MU,
                sigma=PRIOR_SIGMA,
                wins=0,
                losses=0,
                draws=0,
            )
            session.add(deck)
            session.flush()
        return deck

    def get_or_create(
        self,
        session: Session,
        target_type: TargetType,
        entity_id: str,
        display_name: str | None = None,
    ) -> RatedEntity:
        if target_type is TargetType.PLAYER:
            return self.get_or_create_player(session, entity_id)
        return self.get_or_create_deck(session, entity_id, display_name)

    def all_entities(self, session: Session, target_type: TargetType) -> list[RatedEntity]:
        model = model_for(target_type)
        return list(session.execute(select(model).order_by(model.id)).scalars().all())

    def players(self, session: Session) -> list[Player]:
        return list(session.execute(select(Player).order_by(Player.id)).scalars().all())

    def delete_unreferenced(
        self,
        session: Session,
        target_type: TargetType,
        entity_ids: Collection[str] | None = None,
    ) -> list[str]:
        """Physically remove zero-game entities that no participation row references.

        Players that carry admin state (a default deck or a restriction) are kept.
        ``entity_ids`` limits the sweep to those entities.
        """
        if target_type is TargetType.PLAYER:
            referenced = select(Match.player_id)
            candidates = select(Player.id).where(
                Player.wins + Player.losses + Player.draws == 0,
                Player.id.not_in(referenced),
                Player.default_deck.is_(None),
                Player.restricted.is_(False),
            )
            model: type[Player] | type[Deck] = Player
        else:
            candidates = select(Deck.id).where(
                Deck.wins + Deck.losses + Deck.draws == 0,
                Deck.id.not_in(select(DeckMatch.deck_id)),
                Deck.id.not_in(select(Player.default_deck).where(Player.default_deck.is_not(None))),
                Deck.id.not_in(select(Match.deck_ref).where(Match.deck_ref.is_not(None))),
            )
            model = Deck

        if entity_ids is not None:
            if not entity_ids:
                return []
            candidates = candidates.where(model.id.in_(list(entity_ids)))
        ids = list(session.execute(candidates.order_by(model.id)).scalars().all())
        if ids:
            session.execute(delete(model).where(model.id.in_(ids)).execution_options(synchronize_session="fetch"))
        return ids
