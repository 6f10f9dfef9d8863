"""
Workflow X-Ray
Fuzzy diff between two decompositions.

Steps are matched greedily, in ``after`` order, by a blended name/position
score; gaps are matched by fingerprint. Inputs are never mutated.

    score = 0.4 * levenshtein(name) + 0.4 * jaccard(name words) + 0.2 * position
"""

import logging
import re

from workflow_xray.models.decomposition import (
    CompareResult,
    Decomposition,
    ModifiedStep,
)

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.55
FINGERPRINT_WORDS = 8

_COMPARED_FIELDS = (
    ("name", "name"),
    ("layer", "layer"),
    ("owner", "owner"),
    ("automationScore", "automation_score"),
    ("description", "description"),
    ("tools", "tools"),
    ("inputs", "inputs"),
    ("outputs", "outputs"),
)

_HEALTH_FIELDS = (
    ("complexity", "complexity"),
    ("fragility", "fragility"),
    ("automationPotential", "automation_potential"),
    ("teamLoadBalance", "team_load_balance"),
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


# ── Similarity measures ───────────────────────────────────────────────────────

def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert / delete / substitute, all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def jaccard_word_similarity(a: str, b: str) -> float:
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _relative_position(index: int, count: int) -> float:
    if count <= 1:
        return 0.5
    return index / (count - 1)


def position_similarity(index_a: int, count_a: int, index_b: int, count_b: int) -> float:
    return 1.0 - abs(_relative_position(index_a, count_a) - _relative_position(index_b, count_b))


def step_match_score(before_step, before_index, before_count,
                     after_step, after_index, after_count) -> float:
    return (
        0.4 * levenshtein_similarity(before_step.name, after_step.name)
        + 0.4 * jaccard_word_similarity(before_step.name, after_step.name)
        + 0.2 * position_similarity(before_index, before_count, after_index, after_count)
    )


def gap_fingerprint(gap) -> str:
    """``type:`` + up to 8 distinct long words of the description, sorted."""
    cleaned = _PUNCTUATION_RE.sub("", gap.description.lower())
    words = []
    for word in cleaned.split():
        if len(word) > 3 and word not in words:
            words.append(word)
        if len(words) == FINGERPRINT_WORDS:
            break
    return f"{gap.type.value}:{','.join(sorted(words))}"


# ── Matching ──────────────────────────────────────────────────────────────────

def _match_steps(before_steps, after_steps) -> list[tuple]:
    """Greedy matching; returns (after_step, before_index | None) in ``after`` order."""
    unmatched = list(range(len(before_steps)))
    pairs = []
    for ai, after_step in enumerate(after_steps):
        best_index, best_score = None, MATCH_THRESHOLD
        for bi in unmatched:
            score = step_match_score(before_steps[bi], bi, len(before_steps),
                                     after_step, ai, len(after_steps))
            if score >= best_score and (best_index is None or score > best_score):
                best_index, best_score = bi, score
        if best_index is None:
            pairs.append((after_step, None))
        else:
            unmatched.remove(best_index)
            pairs.append((after_step, best_index))
    return pairs


def _changed_fields(before_step, after_step) -> list[str]:
    return [
        wire_name for wire_name, attr in _COMPARED_FIELDS
        if getattr(before_step, attr) != getattr(after_step, attr)
    ]


def _summarize(gaps_resolved, gaps_new, health_delta, added, removed) -> str:
    parts = []
    if gaps_resolved:
        parts.append(f"{len(gaps_resolved)} gap(s) resolved")
    if gaps_new:
        parts.append(f"{len(gaps_new)} new gap(s) introduced")

    automation = health_delta["automationPotential"]
    if automation:
        direction = "improved" if automation > 0 else "decreased"
        parts.append(f"automation {direction} by {abs(automation)}%")

    fragility = health_delta["fragility"]
    if fragility:
        direction = "reduced" if fragility < 0 else "increased"
        parts.append(f"fragility {direction} by {abs(fragility)} points")

    if added:
        parts.append(f"{len(added)} step(s) added")
    if removed:
        parts.append(f"{len(removed)} step(s) removed")

    if not parts:
        return "No significant changes detected."
    return ", ".join(parts) + "."


# ── Public API ────────────────────────────────────────────────────────────────

def compare_decompositions(before: Decomposition, after: Decomposition) -> CompareResult:
    """Build the change report from ``before`` to ``after``."""
    before_steps = list(before.steps)
    after_steps = list(after.steps)

    added, modified, unchanged = [], [], []
    matched_before = set()
    for after_step, before_index in _match_steps(before_steps, after_steps):
        if before_index is None:
            added.append(after_step)
            continue
        matched_before.add(before_index)
        before_step = before_steps[before_index]
        changes = _changed_fields(before_step, after_step)
        if changes:
            modified.append(ModifiedStep(step=after_step, before_step=before_step,
                                         changes=tuple(changes)))
        else:
            unchanged.append(after_step)
    removed = [s for i, s in enumerate(before_steps) if i not in matched_before]

    before_prints = {gap_fingerprint(g) for g in before.gaps}
    after_prints = {gap_fingerprint(g) for g in after.gaps}
    gaps_resolved = [g for g in before.gaps if gap_fingerprint(g) not in after_prints]
    gaps_new = [g for g in after.gaps if gap_fingerprint(g) not in before_prints]
    gaps_persistent = [g for g in after.gaps if gap_fingerprint(g) in before_prints]

    health_delta = {
        wire_name: getattr(after.health, attr) - getattr(before.health, attr)
        for wire_name, attr in _HEALTH_FIELDS
    }

    summary = _summarize(gaps_resolved, gaps_new, health_delta, added, removed)
    logger.info("Compared decompositions %s -> %s: %s", before.id, after.id, summary)

    return CompareResult(
        added=tuple(added),
        removed=tuple(removed),
        modified=tuple(modified),
        unchanged=tuple(unchanged),
        gaps_resolved=tuple(gaps_resolved),
        gaps_new=tuple(gaps_new),
        gaps_persistent=tuple(gaps_persistent),
        health_delta=health_delta,
        health_before=before.health,
        health_after=after.health,
        summary=summary,
    )
