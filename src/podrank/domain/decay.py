"""Linear inactivity decay for player ratings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from podrank.domain.elo import display_elo, mu_from_elo

_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DecayPolicy:
    enabled: bool = True
    grace_days: int = 6
    elo_cutoff: int = 1050
    elo_per_day: int = 1
    sigma_per_day: float = 0.01
    max_sigma_increase: float = 2.0
    sigma_cap: float = 10.0


@dataclass(frozen=True)
class DecayStep:
    """One decay application for one player."""

    before_mu: float
    before_sigma: float
    after_mu: float
    after_sigma: float
    old_elo: int
    new_elo: int
    days_inactive: int
    days_past_grace: int
    new_days: int

    @property
    def days_applied(self) -> int:
        """Value to store as the player's ``decay_days_applied`` afterwards."""
        return self.days_past_grace


def compute_decay(
    policy: DecayPolicy,
    *,
    mu: float,
    sigma: float,
    games_played: int,
    last_active: datetime | None,
    days_applied: int,
    now: datetime,
) -> DecayStep | None:
    """Decay owed at ``now`` for days not yet charged, or ``None``.

    Players without games or without a last-active time never decay, and
    nobody decays below the Elo cutoff.
    """
    if not policy.enabled or games_played == 0 or last_active is None:
        return None

    days_inactive = max(0, (now - last_active) // _DAY)
    days_past_grace = max(0, days_inactive - policy.grace_days)
    new_days = days_past_grace - days_applied
    if new_days <= 0:
        return None

    old_elo = display_elo(mu, sigma)
    if old_elo <= policy.elo_cutoff:
        return None

    target_elo = max(old_elo - new_days * policy.elo_per_day, policy.elo_cutoff)
    sigma_increase = min(new_days * policy.sigma_per_day, policy.max_sigma_increase)
    new_sigma = min(sigma + sigma_increase, policy.sigma_cap)
    new_mu = mu_from_elo(target_elo, new_sigma)

    return DecayStep(
        before_mu=mu,
        before_sigma=sigma,
        after_mu=new_mu,
        after_sigma=new_sigma,
        old_elo=old_elo,
        new_elo=display_elo(new_mu, new_sigma),
        days_inactive=days_inactive,
        days_past_grace=days_past_grace,
        new_days=new_days,
    )
