"""
Fuzzy diff engine.

Covers:
    - similarity helpers (levenshtein, jaccard, position)
    - greedy step matching across renamed ids
    - modified / unchanged / added / removed classification
    - gap fingerprints (resolved / new / persistent)
    - health delta and summary sentence
"""

import pytest

from workflow_xray.models.decomposition import (
    Decomposition,
    Gap,
    GapType,
    HealthMetrics,
    Layer,
    Severity,
    Step,
)
from workflow_xray.services.compare import (
    compare_decompositions,
    gap_fingerprint,
    jaccard_word_similarity,
    levenshtein_distance,
    levenshtein_similarity,
    position_similarity,
)


def _decomp(steps, gaps=(), health=None, decomp_id="d"):
    return Decomposition(id=decomp_id, title="T", steps=tuple(steps), gaps=tuple(gaps),
                         health=health or HealthMetrics())


def _gap(description, gap_type=GapType.BOTTLENECK):
    return Gap(type=gap_type, severity=Severity.MEDIUM, description=description)


class TestSimilarityHelpers:
    def test_levenshtein_distance(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_levenshtein_similarity_both_empty(self):
        assert levenshtein_similarity("", "") == 1.0

    def test_levenshtein_similarity(self):
        assert levenshtein_similarity("abcd", "abcx") == pytest.approx(0.75)

    def test_jaccard(self):
        assert jaccard_word_similarity("Review Draft", "review the draft") == pytest.approx(2 / 3)
        assert jaccard_word_similarity("", "") == 1.0
        assert jaccard_word_similarity("", "draft") == 0.0

    def test_position_similarity(self):
        assert position_similarity(0, 3, 0, 3) == 1.0
        assert position_similarity(0, 3, 2, 3) == 0.0
        assert position_similarity(0, 1, 0, 3) == 0.5


class TestGapFingerprint:
    def test_words_filtered_sorted_and_joined(self):
        gap = _gap("The Manager's review creates delays, every time!")
        assert gap_fingerprint(gap) == "bottleneck:creates,delays,every,managers,review,time"

    def test_only_first_eight_distinct_words(self):
        gap = _gap("alpha bravo charlie delta echo foxtrot golf hotel india juliet alpha")
        assert gap_fingerprint(gap) == "bottleneck:alpha,bravo,charlie,delta,echo,foxtrot,golf,hotel"

    def test_type_is_part_of_fingerprint(self):
        a = _gap("same words here", GapType.BOTTLENECK)
        b = _gap("same words here", GapType.CONTEXT_LOSS)
        assert gap_fingerprint(a) != gap_fingerprint(b)


class TestCompareDecompositions:
    def test_identical_decompositions(self):
        steps = [Step(id="a", name="Draft content"), Step(id="b", name="Review draft")]
        result = compare_decompositions(_decomp(steps), _decomp(steps))
        assert [s.id for s in result.unchanged] == ["a", "b"]
        assert not result.added and not result.removed and not result.modified
        assert result.summary == "No significant changes detected."

    def test_matches_by_name_not_id(self):
        before = _decomp([Step(id="step_1", name="Draft content")])
        after = _decomp([Step(id="s-9", name="Draft content")])
        result = compare_decompositions(before, after)
        assert [s.id for s in result.unchanged] == ["s-9"]
        assert not result.added and not result.removed

    def test_modified_fields_reported(self):
        before = _decomp([Step(id="a", name="Review draft", layer=Layer.HUMAN, automation_score=20,
                               tools=("Docs",))])
        after = _decomp([Step(id="a", name="Review draft", layer=Layer.CELL, automation_score=70,
                              tools=("Docs", "Grammarly"))])
        result = compare_decompositions(before, after)
        assert len(result.modified) == 1
        modified = result.modified[0]
        assert modified.changes == ("layer", "automationScore", "tools")
        assert modified.before_step.layer == Layer.HUMAN
        assert modified.step.layer == Layer.CELL

    def test_list_order_matters(self):
        before = _decomp([Step(id="a", name="Publish", inputs=("x", "y"))])
        after = _decomp([Step(id="a", name="Publish", inputs=("y", "x"))])
        result = compare_decompositions(before, after)
        assert result.modified[0].changes == ("inputs",)

    def test_added_and_removed(self):
        before = _decomp([Step(id="a", name="Draft content"), Step(id="b", name="Fax the contract")])
        after = _decomp([Step(id="a", name="Draft content"), Step(id="c", name="Send e-signature link")])
        result = compare_decompositions(before, after)
        assert [s.id for s in result.added] == ["c"]
        assert [s.id for s in result.removed] == ["b"]
        assert "1 step(s) added" in result.summary
        assert "1 step(s) removed" in result.summary

    def test_each_before_step_matched_once(self):
        before = _decomp([Step(id="a", name="Review draft")])
        after = _decomp([Step(id="x", name="Review draft"), Step(id="y", name="Review draft")])
        result = compare_decompositions(before, after)
        assert [s.id for s in result.unchanged] == ["x"]
        assert [s.id for s in result.added] == ["y"]

    def test_gap_classification(self):
        persistent = _gap("Manager review creates delays")
        resolved = _gap("Manual data entry into spreadsheet", GapType.MANUAL_OVERHEAD)
        new = _gap("No fallback when the vendor portal is down", GapType.MISSING_FALLBACK)
        before = _decomp([], gaps=[persistent, resolved])
        after = _decomp([], gaps=[_gap("manager REVIEW creates delays."), new])
        result = compare_decompositions(before, after)
        assert result.gaps_resolved == (resolved,)
        assert result.gaps_new == (new,)
        assert len(result.gaps_persistent) == 1

    def test_health_delta_and_summary(self):
        before = _decomp([], gaps=[_gap("Manual data entry into spreadsheet")],
                         health=HealthMetrics(complexity=40, fragility=60,
                                              automation_potential=30, team_load_balance=50))
        after = _decomp([], gaps=[_gap("Nobody owns the weekly report", GapType.SCOPE_AMBIGUITY)],
                        health=HealthMetrics(complexity=45, fragility=48,
                                             automation_potential=42, team_load_balance=50))
        result = compare_decompositions(before, after)
        assert result.health_delta == {
            "complexity": 5,
            "fragility": -12,
            "automationPotential": 12,
            "teamLoadBalance": 0,
        }
        assert result.summary == (
            "1 gap(s) resolved, 1 new gap(s) introduced, automation improved by 12%, "
            "fragility reduced by 12 points."
        )

    def test_summary_for_regression(self):
        before = _decomp([], health=HealthMetrics(fragility=10, automation_potential=50))
        after = _decomp([], health=HealthMetrics(fragility=25, automation_potential=45))
        result = compare_decompositions(before, after)
        assert result.summary == "automation decreased by 5%, fragility increased by 15 points."

    def test_inputs_are_not_mutated(self):
        steps = (Step(id="a", name="Draft"),)
        before = _decomp(steps)
        after = _decomp((Step(id="b", name="Publish"),))
        compare_decompositions(before, after)
        assert before.steps == steps

    def test_to_dict_wire_shape(self):
        before = _decomp([Step(id="a", name="Draft")])
        after = _decomp([Step(id="a", name="Draft", owner="Writer")])
        data = compare_decompositions(before, after).to_dict()
        assert set(data) == {
            "added", "removed", "modified", "unchanged", "gapsResolved", "gapsNew",
            "gapsPersistent", "healthDelta", "healthBefore", "healthAfter", "summary",
        }
        assert data["modified"][0]["changes"] == ["owner"]
        assert data["modified"][0]["beforeStep"]["owner"] is None


# ═════════════════════════════════════════════════════════════════════════════
# Wire-shape reading
# ═════════════════════════════════════════════════════════════════════════════

class TestFromDict:
    def test_step_reads_camel_case_fields(self):
        step = Step.from_dict({"id": 3, "name": "Review", "layer": "cell", "inputs": ["draft"],
                               "automationScore": 40, "dependencies": ["2"]})
        assert step.id == "3"
        assert step.layer is Layer.CELL
        assert step.inputs == ("draft",)
        assert step.dependencies == ("2",)

    @pytest.mark.parametrize("data", [
        {"id": "s1", "name": 7},
        {"id": "s1", "inputs": "draft"},
        {"id": "s1", "tools": ["Jira", 2]},
        {"id": True},
        {"id": {"nested": 1}},
    ])
    def test_step_rejects_wrongly_typed_fields(self, data):
        with pytest.raises(ValueError):
            Step.from_dict(data)

    @pytest.mark.parametrize("data", [
        {"type": "bottleneck", "description": 5},
        {"type": "bottleneck", "stepIds": "s1"},
        {"type": "bottleneck", "impactedRoles": [1]},
    ])
    def test_gap_rejects_wrongly_typed_fields(self, data):
        with pytest.raises(ValueError):
            Gap.from_dict(data)

    @pytest.mark.parametrize("data", [
        {"steps": {"id": "s1"}},
        {"gaps": ["bottleneck"]},
        {"health": [1, 2]},
    ])
    def test_decomposition_rejects_wrongly_typed_collections(self, data):
        with pytest.raises(ValueError):
            Decomposition.from_dict({"id": "d", "title": "T", **data})
