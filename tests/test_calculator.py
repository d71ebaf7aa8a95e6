"""Unit tests for free-for-all OpenSkill rating and its post-processing."""

from __future__ import annotations

import pytest

from podrank.domain.calculator import Competitor, PipelineOptions, PodRatingCalculator, RatingParameters
from podrank.domain.common import Outcome
from podrank.domain.elo import PRIOR_MU, PRIOR_SIGMA, display_elo


def _pod(*outcomes: str, mu: float = PRIOR_MU, sigma: float = PRIOR_SIGMA) -> list[Competitor]:
    return [
        Competitor(key=f"p{index}", mu=mu, sigma=sigma, outcome=Outcome(outcome))
        for index, outcome in enumerate(outcomes, start=1)
    ]


def test_rating_parameter_defaults_are_expected_constants() -> None:
    params = RatingParameters()
    assert params.initial_mu == pytest.approx(25.0)
    assert params.initial_sigma == pytest.approx(8.333)
    assert params.beta == pytest.approx(25.0 / 6.0)
    assert params.kappa == pytest.approx(0.0001)
    assert params.tau == pytest.approx(25.0 / 300.0)
    assert params.limit_sigma is False
    assert params.balance is False


def test_four_player_win_from_priors() -> None:
    calculator = PodRatingCalculator()
    winner, *losers = calculator.rate(_pod("w", "l", "l", "l"))

    assert winner.pre_elo == 1000
    assert winner.pre_bonus_elo >= 1002
    assert winner.post_elo == winner.pre_bonus_elo + 1
    assert winner.post_elo >= 1003
    for loser in losers:
        assert loser.pre_bonus_elo <= 998
        assert loser.post_elo <= 999
        assert loser.post_mu < loser.pre_mu


def test_equal_losers_receive_identical_updates() -> None:
    calculator = PodRatingCalculator()
    _, first, second, third = calculator.rate(_pod("w", "l", "l", "l"))
    assert first.post_mu == pytest.approx(second.post_mu)
    assert second.post_sigma == pytest.approx(third.post_sigma)


def test_heavy_favourite_win_is_floored_to_minimum_change() -> None:
    calculator = PodRatingCalculator(options=PipelineOptions(participation_bonus=False))
    competitors = [
        Competitor(key="favourite", mu=50.0, sigma=1.5, outcome=Outcome.WIN),
        *_pod("l", "l", "l"),
    ]
    favourite = calculator.rate(competitors)[0]

    assert favourite.floored is True
    assert favourite.post_elo - favourite.pre_elo == 2
    assert display_elo(favourite.raw_mu, favourite.raw_sigma) - favourite.pre_elo < 2


@pytest.mark.parametrize(
    ("ratings", "outcomes"),
    [
        ([(25.0, 8.333), (25.0, 8.333), (25.0, 8.333), (25.0, 8.333)], "wlll"),
        ([(45.0, 2.0), (20.0, 6.0), (30.0, 3.0), (25.0, 8.333)], "wlll"),
        ([(12.0, 3.0), (40.0, 2.0), (38.0, 2.5), (35.0, 1.5)], "wlll"),
        ([(30.0, 4.0), (12.0, 7.0), (25.0, 8.333)], "lwl"),
        ([(40.0, 1.0), (10.0, 1.0)], "wl"),
        ([(10.0, 1.0), (40.0, 1.0)], "wl"),
    ],
)
def test_minimum_change_holds_without_bonus(ratings: list[tuple[float, float]], outcomes: str) -> None:
    calculator = PodRatingCalculator(options=PipelineOptions(participation_bonus=False))
    competitors = [
        Competitor(key=f"p{index}", mu=mu, sigma=sigma, outcome=Outcome(outcome))
        for index, ((mu, sigma), outcome) in enumerate(zip(ratings, outcomes))
    ]
    for update in calculator.rate(competitors):
        if update.outcome is Outcome.WIN:
            assert update.post_elo - update.pre_elo >= 2
        else:
            assert update.post_elo - update.pre_elo <= -2


def test_draws_are_exempt_from_minimum_change() -> None:
    calculator = PodRatingCalculator(options=PipelineOptions(participation_bonus=False))
    updates = calculator.rate(_pod("d", "d", "d", "d"))
    assert all(update.floored is False for update in updates)


def test_three_player_games_are_dampened_towards_prior() -> None:
    options = PipelineOptions(minimum_change=False, participation_bonus=False)
    calculator = PodRatingCalculator(options=options)
    updates = calculator.rate(_pod("w", "l", "l"))

    for update in updates:
        assert update.dampened is True
        assert update.post_mu - PRIOR_MU == pytest.approx((update.raw_mu - PRIOR_MU) * 0.9)
        assert update.post_sigma == pytest.approx(update.raw_sigma)


def test_four_player_games_are_not_dampened() -> None:
    updates = PodRatingCalculator().rate(_pod("w", "l", "l", "l"))
    assert not any(update.dampened for update in updates)


def test_disabled_dampening_leaves_small_groups_untouched() -> None:
    options = PipelineOptions(dampen_small_groups=False, minimum_change=False, participation_bonus=False)
    updates = PodRatingCalculator(options=options).rate(_pod("w", "l", "l"))
    for update in updates:
        assert update.post_mu == pytest.approx(update.raw_mu)


def test_bonus_adds_one_elo_at_unchanged_sigma() -> None:
    calculator = PodRatingCalculator()
    mu = calculator.bonus_mu(27.0, 7.5)
    assert display_elo(mu, 7.5) == display_elo(27.0, 7.5) + 1


def test_phantoms_are_rated_but_not_returned() -> None:
    calculator = PodRatingCalculator()
    competitors = [*_pod("w", "l"), calculator.phantom(0), calculator.phantom(1)]
    updates = calculator.rate(competitors)

    assert [update.key for update in updates] == ["p1", "p2"]
    assert calculator.phantom(0).outcome is Outcome.LOSS


def test_rate_requires_two_competitors() -> None:
    with pytest.raises(ValueError, match="at least two competitors"):
        PodRatingCalculator().rate(_pod("w"))


@pytest.mark.parametrize("count", [2, 3, 4])
def test_equal_ratings_predict_equal_win_chances(count: int) -> None:
    calculator = PodRatingCalculator()

    chances = calculator.predict_win([(PRIOR_MU, PRIOR_SIGMA)] * count)

    assert chances == pytest.approx([1.0 / count] * count)


def test_stronger_competitor_is_favoured() -> None:
    calculator = PodRatingCalculator()

    chances = calculator.predict_win([(30.0, 5.0), (PRIOR_MU, PRIOR_SIGMA), (PRIOR_MU, PRIOR_SIGMA)])

    assert sum(chances) == pytest.approx(1.0)
    assert chances[0] > chances[1]
    assert chances[1] == pytest.approx(chances[2])


def test_prediction_needs_two_competitors() -> None:
    with pytest.raises(ValueError, match="at least two"):
        PodRatingCalculator().predict_win([(PRIOR_MU, PRIOR_SIGMA)])
