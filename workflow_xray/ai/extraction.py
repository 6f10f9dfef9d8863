"""
Workflow X-Ray
JSON extraction from free-text model responses.

Strategies, tried in order:
    1. fenced   - content of the first ``` / ```json code block
    2. raw      - the whole response text
    3. brace    - greedy match from the first "{" to the last "}"

The first strategy that parses to a JSON object wins.
"""

import json
import logging
import re

from workflow_xray.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BRACE_RE = re.compile(r"\{[\s\S]*\}")


def _fenced_candidate(text: str) -> str | None:
    match = _FENCE_RE.search(text)
    return match.group(1) if match else None


def _brace_candidate(text: str) -> str | None:
    match = _BRACE_RE.search(text)
    return match.group(0) if match else None


_STRATEGIES = (
    ("fenced", _fenced_candidate),
    ("raw", lambda text: text),
    ("brace", _brace_candidate),
)


def extract_json(text: str) -> dict:
    """
    Pull a JSON object out of arbitrary model output.

    Returns:
        The parsed object.

    Raises:
        ExtractionError: if none of the strategies yields a JSON object.
    """
    text = text if isinstance(text, str) else ""
    attempts = []

    for name, strategy in _STRATEGIES:
        candidate = strategy(text)
        if candidate is None or not candidate.strip():
            continue
        attempts.append(name)
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError) as exc:
            logger.debug("JSON extraction strategy '%s' failed: %s", name, exc)
            continue
        if isinstance(parsed, dict):
            if name != "fenced":
                logger.debug("JSON extracted via '%s' strategy", name)
            return parsed
        logger.debug("JSON extraction strategy '%s' produced %s, not an object",
                     name, type(parsed).__name__)

    raise ExtractionError(
        "Could not extract JSON from model response "
        f"(tried: {', '.join(attempts) or 'nothing to parse'})",
        attempts=attempts,
    )
