"""
Workflow X-Ray
Decomposition value types.

Frozen dataclasses for the repaired workflow graph. Python attributes are
snake_case; ``to_dict()`` produces the camelCase JSON wire shape and
``from_dict()`` reads it back.

    Step           - one unit of work, with dependencies on other step ids
    Gap            - a structural deficiency affecting one or more steps
    HealthMetrics  - the four 0-100 composite scores
    Decomposition  - id + title + steps + gaps + health
    CompareResult  - output of the diff engine (never persisted)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class Layer(str, Enum):
    HUMAN = "human"
    CELL = "cell"
    ORCHESTRATION = "orchestration"
    MEMORY = "memory"
    INTEGRATION = "integration"


class GapType(str, Enum):
    BOTTLENECK = "bottleneck"
    CONTEXT_LOSS = "context_loss"
    SINGLE_DEPENDENCY = "single_dependency"
    MANUAL_OVERHEAD = "manual_overhead"
    MISSING_FEEDBACK = "missing_feedback"
    MISSING_FALLBACK = "missing_fallback"
    SCOPE_AMBIGUITY = "scope_ambiguity"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


LAYER_VALUES = frozenset(layer.value for layer in Layer)
GAP_TYPE_VALUES = frozenset(gap_type.value for gap_type in GapType)
SEVERITY_VALUES = frozenset(severity.value for severity in Severity)

UNASSIGNED_OWNER = "Unassigned"


# ── Wire-shape readers (raise ValueError on a wrongly typed field) ────────────

def _text(data: dict, key: str, default: str | None = "") -> str | None:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _text_list(data: dict, key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    return tuple(value)


def _object_list(data: dict, key: str) -> list[dict]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"{key} must be a list of objects")
    return value


# ═════════════════════════════════════════════════════════════════════════════
# Graph entities
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Step:
    """A unit of work in a decomposed workflow."""
    id: str
    name: str
    description: str = ""
    owner: str | None = None
    layer: Layer = Layer.HUMAN
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    tools: tuple[str, ...] = ()
    automation_score: int = 0
    dependencies: tuple[str, ...] = ()

    @property
    def owner_bucket(self) -> str:
        """Owner used for load-balance grouping; blank owners share one bucket."""
        if isinstance(self.owner, str) and self.owner.strip():
            return self.owner.strip()
        return UNASSIGNED_OWNER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "layer": self.layer.value,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "tools": list(self.tools),
            "automationScore": self.automation_score,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Step:
        step_id = data["id"]
        if isinstance(step_id, bool) or not isinstance(step_id, (str, int)):
            raise ValueError(f"step id must be a string, got {type(step_id).__name__}")
        step_id = str(step_id)
        return cls(
            id=step_id,
            name=_text(data, "name", step_id),
            description=_text(data, "description"),
            owner=_text(data, "owner", None),
            layer=Layer(data.get("layer", Layer.HUMAN.value)),
            inputs=_text_list(data, "inputs"),
            outputs=_text_list(data, "outputs"),
            tools=_text_list(data, "tools"),
            automation_score=int(data.get("automationScore", 0)),
            dependencies=_text_list(data, "dependencies"),
        )


@dataclass(frozen=True)
class Gap:
    """A structural deficiency detected in a workflow."""
    type: GapType
    severity: Severity
    step_ids: tuple[str, ...] = ()
    description: str = ""
    suggestion: str = ""
    confidence: str | None = None
    time_waste: str | None = None
    effort_level: str | None = None
    impacted_roles: tuple[str, ...] | None = None

    def to_dict(self) -> dict:
        result = {
            "type": self.type.value,
            "severity": self.severity.value,
            "stepIds": list(self.step_ids),
            "description": self.description,
            "suggestion": self.suggestion,
        }
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.time_waste is not None:
            result["timeWaste"] = self.time_waste
        if self.effort_level is not None:
            result["effortLevel"] = self.effort_level
        if self.impacted_roles is not None:
            result["impactedRoles"] = list(self.impacted_roles)
        return result

    @classmethod
    def from_dict(cls, data: dict) -> Gap:
        return cls(
            type=GapType(data["type"]),
            severity=Severity(data.get("severity", Severity.MEDIUM.value)),
            step_ids=_text_list(data, "stepIds"),
            description=_text(data, "description"),
            suggestion=_text(data, "suggestion"),
            confidence=_text(data, "confidence", None),
            time_waste=_text(data, "timeWaste", None),
            effort_level=_text(data, "effortLevel", None),
            impacted_roles=_text_list(data, "impactedRoles") if data.get("impactedRoles") is not None else None,
        )


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScoreConfidence:
    level: str          # "high" | "inferred"
    reason: str

    def to_dict(self) -> dict:
        return {"level": self.level, "reason": self.reason}


@dataclass(frozen=True)
class HealthMetrics:
    """Composite 0-100 health scores for a decomposition."""
    complexity: int = 0
    fragility: int = 0
    automation_potential: int = 0
    team_load_balance: int = 0
    team_size: int | None = None
    confidence: ScoreConfidence | None = None

    def to_dict(self) -> dict:
        result = {
            "complexity": self.complexity,
            "fragility": self.fragility,
            "automationPotential": self.automation_potential,
            "teamLoadBalance": self.team_load_balance,
        }
        if self.team_size is not None:
            result["teamSize"] = self.team_size
        if self.confidence is not None:
            result["confidence"] = self.confidence.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict) -> HealthMetrics:
        conf = data.get("confidence")
        return cls(
            complexity=int(data.get("complexity", 0)),
            fragility=int(data.get("fragility", 0)),
            automation_potential=int(data.get("automationPotential", 0)),
            team_load_balance=int(data.get("teamLoadBalance", 0)),
            team_size=data.get("teamSize"),
            confidence=ScoreConfidence(conf["level"], conf.get("reason", "")) if conf else None,
        )


# ═════════════════════════════════════════════════════════════════════════════
# Decomposition
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Decomposition:
    """A repaired, scored workflow graph. Step order is presentation order."""
    id: str
    title: str
    steps: tuple[Step, ...] = ()
    gaps: tuple[Gap, ...] = ()
    health: HealthMetrics = field(default_factory=HealthMetrics)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "steps": [s.to_dict() for s in self.steps],
            "gaps": [g.to_dict() for g in self.gaps],
            "health": self.health.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Decomposition:
        health = data.get("health") or {}
        if not isinstance(health, dict):
            raise ValueError("health must be an object")
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            steps=tuple(Step.from_dict(s) for s in _object_list(data, "steps")),
            gaps=tuple(Gap.from_dict(g) for g in _object_list(data, "gaps")),
            health=HealthMetrics.from_dict(health),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Comparison
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ModifiedStep:
    step: Step
    before_step: Step
    changes: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "step": self.step.to_dict(),
            "beforeStep": self.before_step.to_dict(),
            "changes": list(self.changes),
        }


@dataclass(frozen=True)
class CompareResult:
    """Structured change report between two decompositions."""
    added: tuple[Step, ...]
    removed: tuple[Step, ...]
    modified: tuple[ModifiedStep, ...]
    unchanged: tuple[Step, ...]
    gaps_resolved: tuple[Gap, ...]
    gaps_new: tuple[Gap, ...]
    gaps_persistent: tuple[Gap, ...]
    health_delta: dict
    health_before: HealthMetrics
    health_after: HealthMetrics
    summary: str

    def to_dict(self) -> dict:
        return {
            "added": [s.to_dict() for s in self.added],
            "removed": [s.to_dict() for s in self.removed],
            "modified": [m.to_dict() for m in self.modified],
            "unchanged": [s.to_dict() for s in self.unchanged],
            "gapsResolved": [g.to_dict() for g in self.gaps_resolved],
            "gapsNew": [g.to_dict() for g in self.gaps_new],
            "gapsPersistent": [g.to_dict() for g in self.gaps_persistent],
            "healthDelta": dict(self.health_delta),
            "healthBefore": self.health_before.to_dict(),
            "healthAfter": self.health_after.to_dict(),
            "summary": self.summary,
        }
