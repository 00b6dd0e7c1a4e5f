"""Breakdown quality scoring and dependency-graph checks.

Quality:
    overall = completeness * 0.35 + complexity * 0.2 + clarity * 0.25 + coherence * 0.2

Structure:
    parallelization = maximal dependency chains / subtask count (capped at 1.0)
    capability match = matched / required over subtasks with a suggested agent
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Final

from negotiator.breakdown.models import BreakdownMetrics, QualityScores, SubtaskDefinition

# ═══════════════════════════════════════════════════════════════════════════
# WEIGHTS
# ═══════════════════════════════════════════════════════════════════════════

COMPLETENESS_WEIGHT: Final = 0.35
COMPLEXITY_WEIGHT: Final = 0.2
CLARITY_WEIGHT: Final = 0.25
COHERENCE_WEIGHT: Final = 0.2

COMPLETENESS_FLOOR: Final = 0.2
COHERENCE_BASE: Final = 0.7
ORDERING_BONUS: Final = 0.2
NO_ASSIGNMENT_MATCH: Final = 0.5

ORDERED_TITLE: Final = re.compile(r"^(step|phase|part|stage)\s*(\d+|[a-z])", re.IGNORECASE)


# ═══════════════════════════════════════════════════════════════════════════
# QUALITY
# ═══════════════════════════════════════════════════════════════════════════


def completeness_score(task_description: str, subtasks: list[SubtaskDefinition]) -> float:
    task_words = set(task_description.lower().split())
    covered: set[str] = set()
    for subtask in subtasks:
        covered.update(subtask.description.lower().split())
    overlap = len(task_words & covered)
    return min(overlap / max(len(task_words), 1), 1.0) * (1 - COMPLETENESS_FLOOR) + COMPLETENESS_FLOOR


def complexity_band(count: int) -> float:
    """Peaks for 3-7 subtasks."""
    if count < 2:
        return 0.3
    if count < 3:
        return 0.7
    if count > 10:
        return 0.4
    if count > 7:
        return 0.8
    return 1.0


def clarity_band(average_length: float) -> float:
    """Peaks for descriptions of 20-200 characters."""
    if average_length < 10:
        return 0.3
    if average_length < 20:
        return 0.7
    if average_length > 500:
        return 0.5
    if average_length > 200:
        return 0.8
    return 1.0


def coherence_score(subtasks: list[SubtaskDefinition]) -> float:
    if any(ORDERED_TITLE.match(s.title) for s in subtasks):
        return COHERENCE_BASE + ORDERING_BONUS
    return COHERENCE_BASE


def quality_scores(task_description: str, subtasks: list[SubtaskDefinition]) -> QualityScores:
    average_length = sum(len(s.description) for s in subtasks) / max(len(subtasks), 1)
    completeness = completeness_score(task_description, subtasks)
    complexity = complexity_band(len(subtasks))
    clarity = clarity_band(average_length)
    coherence = coherence_score(subtasks)
    return QualityScores(
        completeness=completeness,
        complexity=complexity,
        clarity=clarity,
        coherence=coherence,
        overall_score=(
            completeness * COMPLETENESS_WEIGHT
            + complexity * COMPLEXITY_WEIGHT
            + clarity * CLARITY_WEIGHT
            + coherence * COHERENCE_WEIGHT
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
# STRUCTURE
# ═══════════════════════════════════════════════════════════════════════════


def find_cycle(subtasks: Iterable[SubtaskDefinition]) -> list[str] | None:
    """Return one prerequisite cycle as ``[a, b, ..., a]``, or None when acyclic."""
    graph = {s.id: list(s.prerequisites) for s in subtasks}
    done: set[str] = set()

    for start in graph:
        if start in done:
            continue
        path = [start]
        on_path = {start}
        stack = [iter(graph[start])]
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                node = path.pop()
                on_path.discard(node)
                done.add(node)
            elif dep in on_path:
                return path[path.index(dep):] + [dep]
            elif dep in graph and dep not in done:
                path.append(dep)
                on_path.add(dep)
                stack.append(iter(graph[dep]))
    return None


def count_maximal_chains(subtasks: list[SubtaskDefinition]) -> int:
    """Count distinct root-to-leaf dependency paths. Assumes an acyclic graph."""
    ids = {s.id for s in subtasks}
    dependents: dict[str, list[str]] = {s.id: [] for s in subtasks}
    pending: dict[str, int] = {s.id: 0 for s in subtasks}
    for subtask in subtasks:
        for prereq in subtask.prerequisites:
            if prereq in ids:
                dependents[prereq].append(subtask.id)
                pending[subtask.id] += 1

    roots = [node for node, count in pending.items() if count == 0]
    order = list(roots)
    for node in order:
        for child in dependents[node]:
            pending[child] -= 1
            if pending[child] == 0:
                order.append(child)

    paths: dict[str, int] = {}
    for node in reversed(order):
        children = dependents[node]
        paths[node] = sum(paths[c] for c in children) if children else 1
    return sum(paths[r] for r in roots)


def parallelization_score(subtasks: list[SubtaskDefinition]) -> float:
    if not subtasks:
        return 0.0
    return min(count_maximal_chains(subtasks) / len(subtasks), 1.0)


def capability_match_score(
    subtasks: list[SubtaskDefinition],
    capabilities_of: Callable[[str], Iterable[str]],
) -> float:
    matched = 0
    total = 0
    for subtask in subtasks:
        if not subtask.suggested_agent_id:
            continue
        owned = set(capabilities_of(subtask.suggested_agent_id))
        total += len(subtask.required_capabilities)
        matched += sum(1 for cap in subtask.required_capabilities if cap in owned)
    return matched / total if total else NO_ASSIGNMENT_MATCH


def compute_metrics(
    task_description: str,
    subtasks: list[SubtaskDefinition],
    capabilities_of: Callable[[str], Iterable[str]],
) -> BreakdownMetrics:
    return BreakdownMetrics(
        average_complexity=(
            sum(s.estimated_complexity for s in subtasks) / len(subtasks) if subtasks else 0.0
        ),
        parallelization_score=parallelization_score(subtasks),
        capability_match_score=capability_match_score(subtasks, capabilities_of),
        quality=quality_scores(task_description, subtasks),
    )
