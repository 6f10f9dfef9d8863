"""
Workflow X-Ray
Schema validation and best-effort repair of model-produced decompositions.

The model's JSON is untrusted and duck-typed. ``validate_decomposition``
never rejects a well-formed object: it either confirms the shape
(``ValidationOutcome.ok``) or recovers what it can field by field and
returns the partial draft together with a reason string.

Recovery rules:
    - invalid/missing layer            → "human"
    - missing description/suggestion   → ""
    - automationScore out of range     → clamped to [0, 100]
    - step without an id,
      gap without a known type         → dropped (never defaulted)
"""

import logging
import math
from dataclasses import dataclass

from workflow_xray.core.exceptions import SchemaError
from workflow_xray.models.decomposition import (
    GAP_TYPE_VALUES,
    LAYER_VALUES,
    SEVERITY_VALUES,
    Gap,
    GapType,
    Layer,
    Severity,
    Step,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled workflow"


@dataclass(frozen=True)
class DraftDecomposition:
    """Validated (or recovered) model output before integrity repair and scoring."""
    title: str
    steps: tuple[Step, ...] = ()
    gaps: tuple[Gap, ...] = ()


@dataclass(frozen=True)
class ValidationOutcome:
    """Tagged validation result: ``ok`` with ``data``, or not ok with ``partial`` + ``reason``."""
    ok: bool
    data: DraftDecomposition | None = None
    partial: DraftDecomposition | None = None
    reason: str | None = None

    @property
    def draft(self) -> DraftDecomposition:
        return self.data if self.ok else self.partial


class _RecoveryLog:
    """Collects what the repair pass had to change, grouped by kind."""

    def __init__(self):
        self._entries: dict[str, list[str]] = {}

    def add(self, kind: str, ref: str = ""):
        refs = self._entries.setdefault(kind, [])
        if ref and ref not in refs:
            refs.append(ref)

    def __bool__(self):
        return bool(self._entries)

    def reason(self) -> str:
        parts = []
        for kind, refs in self._entries.items():
            parts.append(f"{kind} ({', '.join(refs[:5])})" if refs else kind)
        return "Recovered from schema errors: " + "; ".join(parts)


# ── Field coercion helpers ────────────────────────────────────────────────────

def _is_number(value) -> bool:
    return (isinstance(value, (int, float))
            and not isinstance(value, bool)
            and math.isfinite(value))


def _string_list(value, field_name: str, ref: str, log: _RecoveryLog) -> tuple[str, ...]:
    if not isinstance(value, list):
        log.add(f"{field_name} missing or not a list", ref)
        return ()
    items = []
    for item in value:
        if isinstance(item, str):
            items.append(item)
        elif _is_number(item) or isinstance(item, bool):
            items.append(str(item))
            log.add(f"non-string {field_name} entries converted", ref)
        else:
            log.add(f"invalid {field_name} entries dropped", ref)
    return tuple(items)


def _automation_score(value, ref: str, log: _RecoveryLog) -> int:
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
            log.add("automationScore coerced from string", ref)
        except ValueError:
            value = None
    if not _is_number(value):
        log.add("automationScore missing, defaulted to 0", ref)
        return 0
    if value < 0 or value > 100:
        log.add("automationScore clamped to 0-100", ref)
        value = min(100, max(0, value))
    if value != int(value):
        log.add("automationScore rounded", ref)
    return int(math.floor(value + 0.5))


# ── Entity repair ─────────────────────────────────────────────────────────────

def _step_from_raw(raw, index: int, log: _RecoveryLog) -> Step | None:
    if not isinstance(raw, dict):
        log.add("non-object steps dropped", f"#{index}")
        return None

    step_id = raw.get("id")
    if _is_number(step_id) and not isinstance(step_id, float):
        step_id = str(step_id)
        log.add("numeric step id converted to string", step_id)
    if not isinstance(step_id, str) or not step_id.strip():
        log.add("steps without an id dropped", f"#{index}")
        return None

    name = raw.get("name")
    if not isinstance(name, str):
        log.add("step name missing, defaulted to id", step_id)
        name = step_id

    description = raw.get("description")
    if not isinstance(description, str):
        log.add("step description defaulted to ''", step_id)
        description = ""

    owner = raw.get("owner")
    if owner is not None and not isinstance(owner, str):
        log.add("invalid owner cleared", step_id)
        owner = None
    elif "owner" not in raw:
        log.add("owner missing", step_id)

    layer = raw.get("layer")
    if layer not in LAYER_VALUES:
        log.add("invalid layer defaulted to 'human'", step_id)
        layer = Layer.HUMAN.value

    return Step(
        id=step_id,
        name=name,
        description=description,
        owner=owner,
        layer=Layer(layer),
        inputs=_string_list(raw.get("inputs"), "inputs", step_id, log),
        outputs=_string_list(raw.get("outputs"), "outputs", step_id, log),
        tools=_string_list(raw.get("tools"), "tools", step_id, log),
        automation_score=_automation_score(raw.get("automationScore"), step_id, log),
        dependencies=_string_list(raw.get("dependencies"), "dependencies", step_id, log),
    )


def _optional_str(raw: dict, key: str, ref: str, log: _RecoveryLog) -> str | None:
    value = raw.get(key)
    if value is None or isinstance(value, str):
        return value
    if _is_number(value):
        log.add(f"gap {key} converted to string", ref)
        return str(value)
    log.add(f"invalid gap {key} dropped", ref)
    return None


def _gap_from_raw(raw, index: int, log: _RecoveryLog) -> Gap | None:
    ref = f"gap #{index}"
    if not isinstance(raw, dict):
        log.add("non-object gaps dropped", ref)
        return None

    gap_type = raw.get("type")
    if gap_type not in GAP_TYPE_VALUES:
        log.add("gaps with unknown type dropped", ref)
        return None

    severity = raw.get("severity")
    if severity not in SEVERITY_VALUES:
        log.add("invalid gap severity defaulted to 'medium'", ref)
        severity = Severity.MEDIUM.value

    description = raw.get("description")
    if not isinstance(description, str):
        log.add("gap description defaulted to ''", ref)
        description = ""

    suggestion = raw.get("suggestion")
    if not isinstance(suggestion, str):
        log.add("gap suggestion defaulted to ''", ref)
        suggestion = ""

    impacted_roles = None
    if raw.get("impactedRoles") is not None:
        impacted_roles = _string_list(raw.get("impactedRoles"), "impactedRoles", ref, log)

    return Gap(
        type=GapType(gap_type),
        severity=Severity(severity),
        step_ids=_string_list(raw.get("stepIds"), "stepIds", ref, log),
        description=description,
        suggestion=suggestion,
        confidence=_optional_str(raw, "confidence", ref, log),
        time_waste=_optional_str(raw, "timeWaste", ref, log),
        effort_level=_optional_str(raw, "effortLevel", ref, log),
        impacted_roles=impacted_roles,
    )


# ── Public API ────────────────────────────────────────────────────────────────

def validate_decomposition(payload, fallback_title: str = DEFAULT_TITLE) -> ValidationOutcome:
    """
    Validate a parsed model payload, recovering field by field on failure.

    Args:
        payload: Object produced by ``extract_json``.
        fallback_title: Title used when the payload has none.

    Returns:
        ValidationOutcome (ok, or partial + reason).

    Raises:
        SchemaError: if ``payload`` is not a JSON object at all.
    """
    if not isinstance(payload, dict):
        raise SchemaError(
            f"Decomposition payload must be a JSON object, got {type(payload).__name__}",
            received_type=type(payload).__name__,
        )

    log = _RecoveryLog()

    title = payload.get("title")
    if not isinstance(title, str):
        log.add("title missing, using fallback")
        title = fallback_title

    raw_steps = payload.get("steps")
    if not isinstance(raw_steps, list):
        log.add("steps missing or not a list")
        raw_steps = []

    raw_gaps = payload.get("gaps")
    if not isinstance(raw_gaps, list):
        log.add("gaps missing or not a list")
        raw_gaps = []

    steps = tuple(
        step for step in (_step_from_raw(raw, i, log) for i, raw in enumerate(raw_steps))
        if step is not None
    )
    gaps = tuple(
        gap for gap in (_gap_from_raw(raw, i, log) for i, raw in enumerate(raw_gaps))
        if gap is not None
    )
    draft = DraftDecomposition(title=title, steps=steps, gaps=gaps)

    if not log:
        return ValidationOutcome(ok=True, data=draft)

    reason = log.reason()
    logger.warning("Decomposition schema recovery applied: %s", reason)
    return ValidationOutcome(ok=False, partial=draft, reason=reason)
