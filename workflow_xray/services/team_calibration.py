"""
Team-size calibration for health scoring.

Smaller teams feel fragility and bottlenecks more acutely; larger teams are
held to a stricter load-balance baseline. The medium tier is neutral (1.0),
so scoring without a team size reproduces the uncalibrated formula.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TeamTier(str, Enum):
    SOLO = "solo"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class TeamThresholds:
    fragility_multiplier: float
    bottleneck_multiplier: float
    load_balance_baseline: int

    def to_dict(self) -> dict:
        return {
            "fragilityMultiplier": self.fragility_multiplier,
            "bottleneckMultiplier": self.bottleneck_multiplier,
            "loadBalanceBaseline": self.load_balance_baseline,
        }


THRESHOLDS: dict[TeamTier, TeamThresholds] = {
    TeamTier.SOLO: TeamThresholds(1.8, 1.5, 30),
    TeamTier.SMALL: TeamThresholds(1.4, 1.3, 50),
    TeamTier.MEDIUM: TeamThresholds(1.0, 1.0, 60),
    TeamTier.LARGE: TeamThresholds(0.8, 0.8, 70),
}


def get_team_tier(team_size: float) -> TeamTier:
    """solo ≤1 (zero/negative included), small 2-5, medium 6-20, large 21+."""
    if team_size <= 1:
        return TeamTier.SOLO
    if team_size <= 5:
        return TeamTier.SMALL
    if team_size <= 20:
        return TeamTier.MEDIUM
    return TeamTier.LARGE


def get_thresholds(team_size: float | None = None) -> TeamThresholds:
    """Thresholds for ``team_size``; None means medium-team defaults."""
    if team_size is None:
        return THRESHOLDS[TeamTier.MEDIUM]
    return THRESHOLDS[get_team_tier(team_size)]
