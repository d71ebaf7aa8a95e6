"""Elo-equivalent display scale for mu/sigma ratings."""

from __future__ import annotations

import math

PRIOR_MU = 25.0
PRIOR_SIGMA = 8.333

ELO_BASE = 1000.0
MU_SCALE = 12.0
SIGMA_SCALE = 4.0


def round_half_up(value: float) -> int:
    """Round .5 towards positive infinity (JavaScript ``Math.round`` semantics)."""
    return int(math.floor(value + 0.5))


def display_elo(mu: float, sigma: float) -> int:
    return round_half_up(ELO_BASE + (mu - PRIOR_MU) * MU_SCALE - (sigma - PRIOR_SIGMA) * SIGMA_SCALE)


def mu_from_elo(elo: float, sigma: float) -> float:
    """Solve for the mu that displays as ``elo`` at the given sigma."""
    return (elo - ELO_BASE + (sigma - PRIOR_SIGMA) * SIGMA_SCALE) / MU_SCALE + PRIOR_MU


def mu_for_elo_override(elo: float) -> tuple[float, float]:
    """Manual Elo overrides reset sigma to the prior."""
    return PRIOR_MU + (elo - ELO_BASE) / MU_SCALE, PRIOR_SIGMA
