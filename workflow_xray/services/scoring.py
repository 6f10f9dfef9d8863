"""
Workflow X-Ray
Health scoring engine.

compute_health(steps, gaps, team_size=None) → HealthMetrics

    complexity          - step count, dependency edges and layer variety
    fragility           - gap severities, single-person dependencies and
                          low-automation steps, scaled by team tier
    automationPotential - mean step automation score
    teamLoadBalance     - how evenly steps are spread across owners

All values are integers clamped to [0, 100]. Rounding is half-up.
"""

import logging
import math
from collections import Counter

from workflow_xray.models.decomposition import (
    GapType,
    HealthMetrics,
    ScoreConfidence,
    Severity,
)
from workflow_xray.services.team_calibration import get_thresholds

logger = logging.getLogger(__name__)

LOW_AUTOMATION_THRESHOLD = 30

CONFIDENCE_EXPLICIT = ScoreConfidence("high", "Team size was explicitly provided")
CONFIDENCE_INFERRED = ScoreConfidence("inferred", "No team size specified; using medium-team defaults")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def _complexity(steps) -> int:
    dep_count = sum(len(s.dependencies) for s in steps)
    unique_layers = len({s.layer for s in steps})
    return min(100, len(steps) * 6 + dep_count * 3 + unique_layers * 5)


def _fragility(steps, gaps, multiplier: float) -> int:
    high_gaps = sum(1 for g in gaps if g.severity == Severity.HIGH)
    med_gaps = sum(1 for g in gaps if g.severity == Severity.MEDIUM)
    single_dep_gaps = sum(1 for g in gaps if g.type == GapType.SINGLE_DEPENDENCY)
    low_auto_steps = sum(1 for s in steps if s.automation_score < LOW_AUTOMATION_THRESHOLD)

    raw = high_gaps * 20 + med_gaps * 10 + single_dep_gaps * 15 + low_auto_steps * 5
    return min(100, round_half_up(raw * multiplier))


def _automation_potential(steps) -> int:
    if not steps:
        return 0
    return round_half_up(sum(s.automation_score for s in steps) / len(steps))


def _team_load_balance(steps, baseline: int) -> int:
    n = len(steps)
    if n == 0:
        return 0

    buckets = Counter(s.owner_bucket for s in steps)
    if len(buckets) == 1:
        return min(baseline, round_half_up(100 / n))

    largest = max(buckets.values())
    smallest = min(buckets.values())
    return round_half_up(100 - ((largest - smallest) / largest) * 25)


def compute_health(steps, gaps, team_size=None) -> HealthMetrics:
    """
    Score a repaired step graph.

    Args:
        steps: Steps after referential-integrity repair.
        gaps: Gaps reported for the workflow.
        team_size: Optional team head-count; selects the calibration tier.

    Returns:
        HealthMetrics with every metric in [0, 100].
    """
    steps = list(steps)
    gaps = list(gaps)
    thresholds = get_thresholds(team_size)

    metrics = HealthMetrics(
        complexity=_clamp(_complexity(steps)),
        fragility=_clamp(_fragility(steps, gaps, thresholds.fragility_multiplier)),
        automation_potential=_clamp(_automation_potential(steps)),
        team_load_balance=_clamp(_team_load_balance(steps, thresholds.load_balance_baseline)),
        team_size=team_size,
        confidence=CONFIDENCE_EXPLICIT if team_size is not None else CONFIDENCE_INFERRED,
    )
    logger.debug("Health computed for %d steps / %d gaps: %s", len(steps), len(gaps), metrics.to_dict())
    return metrics
