"""
Workflow X-Ray
X-Ray Blueprint.

Endpoints:
    DECOMPOSE   /api/v1/xray/decompose       POST
    COMPARE     /api/v1/xray/compare         POST
    CACHE       /api/v1/xray/cache/stats     GET
                /api/v1/xray/cache           DELETE   (?hash=<16 hex> for a single entry)
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from workflow_xray.ai.decomposer import WorkflowDecomposer
from workflow_xray.ai.gateway import LLMGateway
from workflow_xray.ai.prompt_registry import PromptRegistry
from workflow_xray.core.exceptions import GatewayError, SchemaError
from workflow_xray.models.decomposition import Decomposition
from workflow_xray.services.compare import compare_decompositions
from workflow_xray.utils.errors import E, api_error

logger = logging.getLogger(__name__)

xray_bp = Blueprint("xray", __name__, url_prefix="/api/v1/xray")

MAX_DESCRIPTION_LENGTH = 15_000
MAX_STAGES = 20
MAX_TEAM_CONTEXT_LENGTH = 200
_STAGE_FIELDS = ("name", "owner", "tools", "inputs", "outputs")


# ── Lazy singletons stored on Flask app (test-isolation safe) ───────────────

def _get_cache():
    return current_app.extensions["analysis_cache"]


def _get_gateway():
    if "xray_gateway" not in current_app.extensions:
        current_app.extensions["xray_gateway"] = LLMGateway(app=current_app)
    return current_app.extensions["xray_gateway"]


def _get_prompt_registry():
    if "xray_prompt_registry" not in current_app.extensions:
        current_app.extensions["xray_prompt_registry"] = PromptRegistry(
            current_app.config.get("XRAY_PROMPTS_DIR"),
        )
    return current_app.extensions["xray_prompt_registry"]


def _get_decomposer():
    if "xray_decomposer" not in current_app.extensions:
        current_app.extensions["xray_decomposer"] = WorkflowDecomposer(
            gateway=_get_gateway(),
            prompt_registry=_get_prompt_registry(),
            cache=_get_cache(),
            model=current_app.config["XRAY_MODEL"],
        )
    return current_app.extensions["xray_decomposer"]


# ── Input validation ─────────────────────────────────────────────────────────

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_string_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _validate_decompose_body(data: dict) -> list[dict]:
    """Return a list of {path, message} problems (empty when valid); a missing field adds ``code``."""
    errors = []

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        return [{"path": "description", "message": "Workflow description is required.",
                 "code": E.VALIDATION_REQUIRED}]
    if len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append({"path": "description",
                       "message": "Workflow description is too long (max 15,000 characters)."})

    stages = data.get("stages")
    if stages is not None:
        if not isinstance(stages, list) or len(stages) > MAX_STAGES:
            errors.append({"path": "stages", "message": f"stages must be a list of at most {MAX_STAGES}."})
        else:
            for i, stage in enumerate(stages):
                if not isinstance(stage, dict) or not isinstance(stage.get("name"), str):
                    errors.append({"path": f"stages.{i}.name", "message": "Stage name is required."})
                    continue
                for key in _STAGE_FIELDS[1:]:
                    if stage.get(key) is not None and not isinstance(stage[key], str):
                        errors.append({"path": f"stages.{i}.{key}", "message": f"{key} must be a string."})

    context = data.get("context")
    if context is not None and not isinstance(context, (str, dict)):
        errors.append({"path": "context", "message": "context must be a string or an object."})
    elif isinstance(context, dict):
        for key in ("team", "tools"):
            members = context.get(key)
            if members is not None and not _is_string_list(members):
                errors.append({"path": f"context.{key}", "message": f"{key} must be a list of strings."})

    cost = data.get("costContext")
    if cost is not None:
        if not isinstance(cost, dict):
            errors.append({"path": "costContext", "message": "costContext must be an object."})
        else:
            team_size = cost.get("teamSize")
            if team_size is not None and (not isinstance(team_size, int) or isinstance(team_size, bool)
                                          or team_size < 1):
                errors.append({"path": "costContext.teamSize",
                               "message": "teamSize must be a positive integer."})
            for key in ("hourlyRate", "hoursPerStep"):
                if cost.get(key) is not None and (not _is_number(cost[key]) or cost[key] < 0):
                    errors.append({"path": f"costContext.{key}",
                                   "message": f"{key} must be a non-negative number."})
            team_context = cost.get("teamContext")
            if team_context is not None and (not isinstance(team_context, str)
                                             or len(team_context) > MAX_TEAM_CONTEXT_LENGTH):
                errors.append({"path": "costContext.teamContext",
                               "message": "teamContext must be a string of at most 200 characters."})

    if data.get("skipCache") is not None and not isinstance(data["skipCache"], bool):
        errors.append({"path": "skipCache", "message": "skipCache must be a boolean."})

    return errors


# ══════════════════════════════════════════════════════════════════════════════
# DECOMPOSE
# ══════════════════════════════════════════════════════════════════════════════

@xray_bp.route("/decompose", methods=["POST"])
def decompose():
    """Decompose a workflow description into a scored step graph."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object.")

    errors = _validate_decompose_body(data)
    if errors:
        required = any(issue.get("code") == E.VALIDATION_REQUIRED for issue in errors)
        code = E.VALIDATION_REQUIRED if required else E.VALIDATION_INVALID
        return api_error(code, "Input validation failed.", details={"issues": errors})

    decompose_request = {
        key: data[key] for key in ("description", "stages", "context", "costContext")
        if data.get(key) is not None
    }

    try:
        result = _get_decomposer().decompose(decompose_request,
                                             skip_cache=bool(data.get("skipCache")))
    except GatewayError as exc:
        logger.error("Decompose failed: %s", exc)
        return api_error(E.GATEWAY, "Decomposition failed. Please try again.",
                         details={"provider": exc.provider, "model": exc.model})
    except SchemaError as exc:
        logger.error("Decompose produced an unusable payload: %s", exc)
        return api_error(E.SCHEMA, str(exc))

    return jsonify(result.to_dict()), 200


# ══════════════════════════════════════════════════════════════════════════════
# COMPARE
# ══════════════════════════════════════════════════════════════════════════════

@xray_bp.route("/compare", methods=["POST"])
def compare():
    """Diff two decompositions: {before, after} → CompareResult."""
    data = request.get_json(silent=True) or {}
    before, after = data.get("before"), data.get("after")
    if not isinstance(before, dict) or not isinstance(after, dict):
        return api_error(E.VALIDATION_REQUIRED, "Both before and after decompositions are required")

    try:
        before_decomp = Decomposition.from_dict(before)
        after_decomp = Decomposition.from_dict(after)
    except (KeyError, ValueError, TypeError) as exc:
        return api_error(E.VALIDATION_INVALID, f"Invalid decomposition: {exc}")

    result = compare_decompositions(before_decomp, after_decomp)
    return jsonify(result.to_dict()), 200


# ══════════════════════════════════════════════════════════════════════════════
# CACHE
# ══════════════════════════════════════════════════════════════════════════════

@xray_bp.route("/cache/stats", methods=["GET"])
def cache_stats():
    return jsonify(_get_cache().get_stats()), 200


@xray_bp.route("/cache", methods=["DELETE"])
def invalidate_cache():
    analysis_hash = request.args.get("hash")
    removed = _get_cache().invalidate(analysis_hash)
    return jsonify({"invalidated": removed, "hash": analysis_hash}), 200
