"""
Workflow X-Ray
Decomposition pipeline.

    raw text → extract_json → validate_decomposition → enforce_referential_integrity
             → compute_health → Decomposition

``build_decomposition`` is the pure chain over already-fetched model text.
``WorkflowDecomposer`` wraps it with prompt rendering, the model gateway
and the analysis cache.

Usage:
    from workflow_xray.ai.decomposer import WorkflowDecomposer
    decomposer = WorkflowDecomposer(gateway, registry, cache, model="claude-sonnet-4-20250514")
    result = decomposer.decompose({"description": "..."})
    result.to_dict()   # decomposition + _meta / _partial / _recoveryReason / _cached
"""

import logging
import uuid
from dataclasses import dataclass, field

from workflow_xray.ai.cache import CacheEntry, compute_analysis_hash
from workflow_xray.ai.extraction import extract_json
from workflow_xray.ai.schema import DEFAULT_TITLE, validate_decomposition
from workflow_xray.core.exceptions import ExtractionError
from workflow_xray.models.decomposition import Decomposition
from workflow_xray.services.integrity import enforce_referential_integrity
from workflow_xray.services.scoring import compute_health

logger = logging.getLogger(__name__)

DECOMPOSE_TEMPLATE = "decompose_workflow"
FALLBACK_TITLE_LENGTH = 80


@dataclass(frozen=True)
class DecompositionMeta:
    prompt_version: str = ""
    model_used: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "promptVersion": self.prompt_version,
            "modelUsed": self.model_used,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DecompositionMeta":
        return cls(
            prompt_version=data.get("promptVersion", ""),
            model_used=data.get("modelUsed", ""),
            input_tokens=int(data.get("inputTokens", 0)),
            output_tokens=int(data.get("outputTokens", 0)),
        )


@dataclass(frozen=True)
class DecompositionResult:
    """Pipeline output: the decomposition plus provenance and recovery flags."""
    decomposition: Decomposition
    meta: DecompositionMeta = field(default_factory=DecompositionMeta)
    partial: bool = False
    recovery_reason: str | None = None
    cache_hit: bool = False
    analysis_hash: str | None = None

    def to_dict(self) -> dict:
        result = self.decomposition.to_dict()
        result["_meta"] = self.meta.to_dict()
        result["_partial"] = self.partial
        if self.recovery_reason:
            result["_recoveryReason"] = self.recovery_reason
        result["_cached"] = self.cache_hit
        return result


def fallback_title_for(description: str) -> str:
    """First non-blank line of the description, trimmed to a title length."""
    for line in (description or "").splitlines():
        line = line.strip()
        if line:
            return line[:FALLBACK_TITLE_LENGTH]
    return DEFAULT_TITLE


def build_decomposition(raw_text: str, *, fallback_title: str = DEFAULT_TITLE,
                        team_size=None) -> DecompositionResult:
    """
    Run the repair chain over a raw model response.

    Never raises on malformed text: no extractable JSON yields an empty
    partial decomposition, and schema problems yield a recovered partial one.
    """
    try:
        payload = extract_json(raw_text)
    except ExtractionError as exc:
        logger.warning("Model response had no extractable JSON: %s", exc)
        return DecompositionResult(
            decomposition=Decomposition(
                id=uuid.uuid4().hex,
                title=fallback_title,
                health=compute_health([], [], team_size),
            ),
            partial=True,
            recovery_reason=str(exc),
        )

    outcome = validate_decomposition(payload, fallback_title=fallback_title)
    draft = outcome.draft
    report = enforce_referential_integrity(draft.steps, draft.gaps)
    if report.repaired:
        logger.info(
            "Referential repairs: %d duplicate step(s), %d pruned edge(s), %d cycle edge(s)",
            len(report.duplicate_ids), len(report.pruned_edges), len(report.broken_edges),
        )

    decomposition = Decomposition(
        id=uuid.uuid4().hex,
        title=draft.title,
        steps=report.steps,
        gaps=report.gaps,
        health=compute_health(report.steps, report.gaps, team_size),
    )
    return DecompositionResult(
        decomposition=decomposition,
        partial=not outcome.ok,
        recovery_reason=outcome.reason,
    )


# ── Prompt building ───────────────────────────────────────────────────────────

def _stage_lines(stages) -> list[str]:
    lines = ["", "Structured stages provided:"]
    for i, stage in enumerate(stages, 1):
        lines.append(f"\nStage {i}: {stage.get('name', '')}")
        for key, label in (("owner", "Owner"), ("tools", "Tools"),
                           ("inputs", "Inputs"), ("outputs", "Outputs")):
            if stage.get(key):
                lines.append(f"  {label}: {stage[key]}")
    return lines


def _context_lines(context) -> list[str]:
    if isinstance(context, str):
        return ["", f"Additional context: {context.strip()}"] if context.strip() else []
    lines = []
    if context.get("team"):
        lines.append(f"Team members: {', '.join(context['team'])}")
    if context.get("tools"):
        lines.append(f"Tools used: {', '.join(context['tools'])}")
    return [""] + lines if lines else []


def _cost_context_lines(cost_context: dict) -> list[str]:
    parts = []
    if cost_context.get("teamSize") is not None:
        parts.append(f"Team size: {cost_context['teamSize']} people")
    team_context = cost_context.get("teamContext")
    if isinstance(team_context, str) and team_context.strip():
        parts.append(f"Team: {team_context.strip()}")
    if cost_context.get("hourlyRate") is not None:
        parts.append(f"Avg hourly rate: ${cost_context['hourlyRate']}")
    if cost_context.get("hoursPerStep") is not None:
        parts.append(f"Avg hours per step: {cost_context['hoursPerStep']}")
    if not parts:
        return []
    return [
        "", "## Team & Cost Context", *parts,
        "Adapt your analysis to this team. For solo operators (team size 1), avoid delegation "
        "suggestions. For larger teams, consider cross-training and load distribution.",
    ]


def build_user_prompt(request: dict) -> str:
    """Description plus stages, team/tool context and the team & cost block."""
    lines = ["Analyze and decompose this workflow:", "", request.get("description", "").strip()]
    if request.get("stages"):
        lines.extend(_stage_lines(request["stages"]))
    if request.get("context"):
        lines.extend(_context_lines(request["context"]))
    if request.get("costContext"):
        lines.extend(_cost_context_lines(request["costContext"]))
    return "\n".join(lines)


# ── Orchestration ─────────────────────────────────────────────────────────────

class WorkflowDecomposer:
    """Prompt → gateway → repair chain, memoized by request hash."""

    def __init__(self, gateway, prompt_registry, cache, model: str,
                 template_name: str = DECOMPOSE_TEMPLATE):
        self.gateway = gateway
        self.prompt_registry = prompt_registry
        self.cache = cache
        self.model = model
        self.template_name = template_name

    def _template(self):
        tpl = self.prompt_registry.get(self.template_name)
        if tpl is None:
            raise KeyError(f"Prompt template not found: {self.template_name}")
        return tpl

    def decompose(self, request: dict, *, skip_cache: bool = False) -> DecompositionResult:
        """
        Decompose a workflow request.

        Args:
            request: ``{description, stages?, context?, costContext?}``.
            skip_cache: Bypass the cache lookup (the result is still stored).

        Returns:
            DecompositionResult.

        Raises:
            GatewayError: if the model call fails after retries.
        """
        template = self._template()
        prompt_version = template.content_hash
        team_size = (request.get("costContext") or {}).get("teamSize")
        analysis_hash = compute_analysis_hash(request, prompt_version, self.model)
        log_extra = {"analysis_hash": analysis_hash}

        if not skip_cache:
            entry = self.cache.get_cached_analysis(analysis_hash)
            if entry is not None:
                logger.info("Serving cached decomposition", extra=log_extra)
                return DecompositionResult(
                    decomposition=Decomposition.from_dict(entry.decomposition),
                    meta=DecompositionMeta.from_dict(entry.metadata),
                    cache_hit=True,
                    analysis_hash=analysis_hash,
                )

        messages = template.render(workflow_request=build_user_prompt(request))
        response = self.gateway.chat(messages, self.model)

        built = build_decomposition(
            response["content"],
            fallback_title=fallback_title_for(request.get("description", "")),
            team_size=team_size,
        )
        meta = DecompositionMeta(
            prompt_version=prompt_version,
            model_used=response.get("model", self.model),
            input_tokens=response.get("prompt_tokens", 0),
            output_tokens=response.get("completion_tokens", 0),
        )
        result = DecompositionResult(
            decomposition=built.decomposition,
            meta=meta,
            partial=built.partial,
            recovery_reason=built.recovery_reason,
            analysis_hash=analysis_hash,
        )

        if result.partial:
            logger.warning("Partial decomposition not cached: %s", result.recovery_reason,
                           extra=log_extra)
        elif meta.model_used != self.model:
            # The hash is keyed on the requested model; a fallback provider's answer must not fill it.
            logger.warning("Decomposition from %s not cached under %s", meta.model_used, self.model,
                           extra=log_extra)
        else:
            self.cache.set_cached_analysis(analysis_hash, CacheEntry(
                hash=analysis_hash,
                decomposition=result.decomposition.to_dict(),
                metadata=meta.to_dict(),
            ))

        logger.info("Decomposed workflow '%s': %d steps, %d gaps",
                    result.decomposition.title, len(result.decomposition.steps),
                    len(result.decomposition.gaps), extra=log_extra)
        return result
