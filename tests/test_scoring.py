"""
Health scoring engine.

Covers:
    - complexity / fragility / automation potential / team load balance formulas
    - team-size calibration and confidence
    - half-up rounding and clamping
"""

import pytest

from workflow_xray.models.decomposition import Gap, GapType, Layer, Severity, Step
from workflow_xray.services.scoring import compute_health, round_half_up


def _step(step_id, *, layer=Layer.HUMAN, score=50, deps=(), owner="Owner"):
    return Step(id=step_id, name=step_id, layer=layer, automation_score=score,
                dependencies=tuple(deps), owner=owner)


def _gap(gap_type=GapType.BOTTLENECK, severity=Severity.HIGH, step_ids=()):
    return Gap(type=gap_type, severity=severity, step_ids=tuple(step_ids))


class TestRoundHalfUp:
    @pytest.mark.parametrize("value, expected", [(47.5, 48), (0.5, 1), (2.5, 3), (2.49, 2), (83.333, 83)])
    def test_rounds_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestComputeHealth:
    def test_empty_inputs(self):
        health = compute_health([], [])
        assert health.complexity == 0
        assert health.fragility == 0
        assert health.automation_potential == 0
        assert health.team_load_balance == 0

    def test_basic_values(self):
        steps = [
            _step("a", layer=Layer.HUMAN, score=40, owner="Alice"),
            _step("b", layer=Layer.CELL, score=80, deps=["a"], owner="Bob"),
            _step("c", layer=Layer.HUMAN, score=60, owner="Charlie"),
        ]
        gaps = [
            _gap(GapType.BOTTLENECK, Severity.HIGH, ["a"]),
            _gap(GapType.SINGLE_DEPENDENCY, Severity.MEDIUM, ["b"]),
        ]
        health = compute_health(steps, gaps)
        assert health.complexity == 31        # 3*6 + 1*3 + 2*5
        assert health.fragility == 45         # 20 + 10 + 15
        assert health.automation_potential == 60
        assert health.team_load_balance == 100

    def test_solo_calibration(self):
        steps = [_step("a", score=40, owner="Solo"), _step("b", score=80, deps=["a"], owner="Solo")]
        health = compute_health(steps, [_gap()], team_size=1)
        assert health.fragility == 36         # round(20 * 1.8)
        assert health.team_size == 1
        assert health.confidence.level == "high"
        assert health.confidence.reason == "Team size was explicitly provided"
        assert health.team_load_balance == 30  # min(solo baseline 30, round(100/2))

    def test_large_calibration(self):
        steps = [_step("a", score=40, owner="Alice"), _step("b", score=80, deps=["a"], owner="Bob")]
        health = compute_health(steps, [_gap()], team_size=25)
        assert health.fragility == 16         # round(20 * 0.8)
        assert health.team_load_balance == 100

    def test_inferred_confidence_without_team_size(self):
        health = compute_health([_step("a")], [])
        assert health.team_size is None
        assert health.confidence.level == "inferred"
        assert health.confidence.reason == "No team size specified; using medium-team defaults"
        assert "teamSize" not in health.to_dict()

    def test_single_owner_load_balance(self):
        steps = [_step(s, owner="Solo") for s in "abcd"]
        assert compute_health(steps, []).team_load_balance == 25   # min(60, round(100/4))

    def test_single_owner_capped_by_baseline(self):
        steps = [_step("a", owner="Solo")]
        assert compute_health(steps, []).team_load_balance == 60   # min(60, 100)

    def test_uneven_owners(self):
        steps = [_step("a", owner="A"), _step("b", owner="A"), _step("c", owner="A"), _step("d", owner="B")]
        assert compute_health(steps, []).team_load_balance == 83   # round(100 - (2/3)*25)

    def test_blank_and_missing_owners_share_a_bucket(self):
        steps = [_step("a", owner=None), _step("b", owner="  "), _step("c", owner="Unassigned")]
        assert compute_health(steps, []).team_load_balance == 33   # one bucket: min(60, round(100/3))

    def test_low_automation_steps_add_fragility(self):
        steps = [_step("a", score=10), _step("b", score=29), _step("c", score=30)]
        assert compute_health(steps, []).fragility == 10

    def test_automation_potential_rounds_half_up(self):
        steps = [_step("a", score=20), _step("b", score=85), _step("c", score=60), _step("d", score=25)]
        assert compute_health(steps, []).automation_potential == 48   # 47.5

    def test_scores_are_clamped(self):
        layers = list(Layer)
        steps = [
            _step(f"s{i}", layer=layers[i % 5], score=10, deps=[f"s{i - 1}"] if i else [], owner="Same")
            for i in range(40)
        ]
        gaps = [_gap(step_ids=[f"s{i}"]) for i in range(25)]
        health = compute_health(steps, gaps, team_size=1)
        for value in (health.complexity, health.fragility,
                      health.automation_potential, health.team_load_balance):
            assert 0 <= value <= 100
        assert health.complexity == 100
        assert health.fragility == 100

    def test_to_dict_wire_shape(self):
        health = compute_health([_step("a")], [], team_size=4)
        data = health.to_dict()
        assert set(data) == {"complexity", "fragility", "automationPotential",
                             "teamLoadBalance", "teamSize", "confidence"}
        assert data["confidence"] == {"level": "high", "reason": "Team size was explicitly provided"}
