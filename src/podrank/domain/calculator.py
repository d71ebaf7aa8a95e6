"""Free-for-all OpenSkill rating with league post-processing (Plackett-Luce model)."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from openskill.models import PlackettLuce

from podrank.domain.common import Outcome
from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA, display_elo, mu_from_elo


@dataclass(frozen=True)
class RatingParameters:
    initial_mu: float = PRIOR_MU
    initial_sigma: float = PRIOR_SIGMA
    beta: float = 25.0 / 6.0
    kappa: float = 0.0001
    tau: float = 25.0 / 300.0
    limit_sigma: bool = False
    balance: bool = False


@dataclass(frozen=True)
class PipelineOptions:
    """Toggles for the post-processing steps applied after the raw update."""

    dampen_small_groups: bool = True
    small_group_size: int = 3
    dampening_factor: float = 0.9
    minimum_change: bool = True
    minimum_elo_change: int = 2
    participation_bonus: bool = True
    bonus_elo: int = 1
    phantom_padding: bool = True
    nominal_group_size: int = 4


@dataclass(frozen=True)
class Competitor:
    """One rated slot in a free-for-all game."""

    key: str
    mu: float
    sigma: float
    outcome: Outcome
    phantom: bool = False


@dataclass(frozen=True)
class RatingUpdate:
    key: str
    outcome: Outcome
    pre_mu: float
    pre_sigma: float
    raw_mu: float
    raw_sigma: float
    post_mu: float
    post_sigma: float
    pre_elo: int
    pre_bonus_elo: int
    post_elo: int
    dampened: bool
    floored: bool
    bonus_applied: bool

    @property
    def elo_delta(self) -> int:
        return self.post_elo - self.pre_elo


class PodRatingCalculator:
    """Stateless wrapper around the OpenSkill model plus league adjustments.

    The steps run in a fixed order: raw OpenSkill update, small-group dampening,
    minimum-change guarantee, participation bonus. Phantom competitors are
    rated alongside real ones but never appear in the returned updates.
    """

    def __init__(self, params: RatingParameters | None = None, options: PipelineOptions | None = None) -> None:
        self.params = params or RatingParameters()
        self.options = options or PipelineOptions()
        self._model = PlackettLuce(
            mu=self.params.initial_mu,
            sigma=self.params.initial_sigma,
            beta=self.params.beta,
            kappa=self.params.kappa,
            tau=self.params.tau,
            limit_sigma=self.params.limit_sigma,
            balance=self.params.balance,
        )

    def phantom(self, index: int) -> Competitor:
        return Competitor(
            key=f"phantom-{index}",
            mu=self.params.initial_mu,
            sigma=self.params.initial_sigma,
            outcome=Outcome.LOSS,
            phantom=True,
        )

    def rate(
        self,
        competitors: Sequence[Competitor],
        *,
        apply_bonus: bool = True,
    ) -> list[RatingUpdate]:
        """Rate one game; callers validate outcomes beforehand."""
        if len(competitors) < 2:
            raise ValueError("at least two competitors are required to rate a game")

        real_count = sum(1 for competitor in competitors if not competitor.phantom)
        # rate() may apply tau to the inputs; keep plain floats of the priors.
        pre = [(float(competitor.mu), float(competitor.sigma)) for competitor in competitors]
        teams = [
            [self._model.rating(mu=competitor.mu, sigma=competitor.sigma, name=competitor.key)]
            for competitor in competitors
        ]
        ranks = [float(competitor.outcome.rank) for competitor in competitors]
        updated = self._model.rate(teams, ranks=ranks)

        dampen = self.options.dampen_small_groups and real_count == self.options.small_group_size
        updates: list[RatingUpdate] = []
        for competitor, (pre_mu, pre_sigma), team in zip(competitors, pre, updated):
            if competitor.phantom:
                continue
            raw_mu = float(team[0].mu)
            raw_sigma = float(team[0].sigma)
            mu = raw_mu
            sigma = raw_sigma

            if dampen:
                mu = self.params.initial_mu + (mu - self.params.initial_mu) * self.options.dampening_factor

            pre_elo = display_elo(pre_mu, pre_sigma)
            mu, floored = self._enforce_minimum_change(competitor.outcome, pre_elo, mu, sigma)
            pre_bonus_elo = display_elo(mu, sigma)

            if apply_bonus and self.options.participation_bonus:
                mu = self.bonus_mu(mu, sigma)

            updates.append(
                RatingUpdate(
                    key=competitor.key,
                    outcome=competitor.outcome,
                    pre_mu=pre_mu,
                    pre_sigma=pre_sigma,
                    raw_mu=raw_mu,
                    raw_sigma=raw_sigma,
                    post_mu=mu,
                    post_sigma=sigma,
                    pre_elo=pre_elo,
                    pre_bonus_elo=pre_bonus_elo,
                    post_elo=display_elo(mu, sigma),
                    dampened=dampen,
                    floored=floored,
                    bonus_applied=apply_bonus and self.options.participation_bonus,
                )
            )
        return updates

    def predict_win(self, ratings: Sequence[tuple[float, float]]) -> list[float]:
        """Chance of each ``(mu, sigma)`` finishing first; the chances sum to 1."""
        if len(ratings) < 2:
            raise ValueError("at least two competitors are required for a prediction")
        teams = [[self._model.rating(mu=mu, sigma=sigma)] for mu, sigma in ratings]
        return [float(probability) for probability in self._model.predict_win(teams)]

    def bonus_mu(self, mu: float, sigma: float) -> float:
        """Mu that shows ``bonus_elo`` more Elo at an unchanged sigma."""
        if not self.options.participation_bonus:
            return mu
        return mu_from_elo(display_elo(mu, sigma) + self.options.bonus_elo, sigma)

    def _enforce_minimum_change(
        self,
        outcome: Outcome,
        pre_elo: int,
        mu: float,
        sigma: float,
    ) -> tuple[float, bool]:
        if not self.options.minimum_change:
            return mu, False

        step = self.options.minimum_elo_change
        change = display_elo(mu, sigma) - pre_elo
        if outcome is Outcome.WIN and change < step:
            return mu_from_elo(pre_elo + step, sigma), True
        if outcome is Outcome.LOSS and change > -step:
            return mu_from_elo(pre_elo - step, sigma), True
        return mu, False
