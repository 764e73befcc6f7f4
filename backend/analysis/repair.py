"""Graph repair for model-produced decompositions.

The language model that produces step/gap graphs is not trusted to keep them
structurally sound. ``repair_decomposition`` turns a schema-valid but
possibly broken graph into a DAG with closed references, applying these
passes in order (each relies on the previous ones):

1. Deduplicate steps by id; the first occurrence wins.
2. Drop dependencies that are unknown, self-referencing, or repeated.
3. Drop gap step references that do not name a surviving step.
4. Drop gaps left with no step reference, unless the gap type is one of the
   system-level types that may describe the whole workflow.
5. Break cycles: one DFS pass over the dependency relation records every
   back-edge; all recorded back-edges are then removed together.
6. Clamp automation scores to [0, 100] and round to an integer.

Repair never raises. Everything it changes is recorded in a ``RepairReport``
and logged; the repaired graph is the same whether or not anyone reads the
report.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from analysis.utils import clamp, round_half_up
from models.schemas import SYSTEM_LEVEL_GAP_TYPES, Gap, Step

logger = structlog.get_logger(__name__)


@dataclass
class RepairReport:
    """What the repair pipeline changed.

    Attributes:
        duplicate_step_ids: Ids of discarded duplicate steps, one per discard.
        dropped_dependencies: (step_id, dependency_id) pairs removed because
            the dependency was unknown, a self-loop, or repeated.
        dropped_gap_references: (gap_index, step_id) pairs removed from gaps.
        dropped_gaps: Input indexes of gaps discarded as orphaned.
        removed_cycle_edges: (step_id, dependency_id) back-edges cut to break cycles.
        adjusted_scores: Ids of steps whose automation score was clamped or rounded.
    """

    duplicate_step_ids: list[str] = field(default_factory=list)
    dropped_dependencies: list[tuple[str, str]] = field(default_factory=list)
    dropped_gap_references: list[tuple[int, str]] = field(default_factory=list)
    dropped_gaps: list[int] = field(default_factory=list)
    removed_cycle_edges: list[tuple[str, str]] = field(default_factory=list)
    adjusted_scores: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True if any pass modified the graph."""
        return any(
            (
                self.duplicate_step_ids,
                self.dropped_dependencies,
                self.dropped_gap_references,
                self.dropped_gaps,
                self.removed_cycle_edges,
                self.adjusted_scores,
            )
        )

    def summary(self) -> dict[str, Any]:
        """Counts per pass, suitable for structured logging."""
        return {
            "duplicate_steps": len(self.duplicate_step_ids),
            "dropped_dependencies": len(self.dropped_dependencies),
            "dropped_gap_references": len(self.dropped_gap_references),
            "dropped_gaps": len(self.dropped_gaps),
            "removed_cycle_edges": len(self.removed_cycle_edges),
            "adjusted_scores": len(self.adjusted_scores),
        }


@dataclass
class RepairResult:
    """Repaired graph plus the diagnostics describing the repair."""

    steps: list[Step]
    gaps: list[Gap]
    report: RepairReport


def _dedupe_steps(steps: Iterable[Step], report: RepairReport) -> list[Step]:
    seen: set[str] = set()
    unique: list[Step] = []
    for step in steps:
        if step.id in seen:
            report.duplicate_step_ids.append(step.id)
            continue
        seen.add(step.id)
        unique.append(step)
    return unique


def _repair_dependencies(step: Step, step_ids: set[str], report: RepairReport) -> Step:
    kept: list[str] = []
    for dep in step.dependencies:
        if dep not in step_ids or dep == step.id or dep in kept:
            report.dropped_dependencies.append((step.id, dep))
            continue
        kept.append(dep)

    if kept == step.dependencies:
        return step
    return step.model_copy(update={"dependencies": kept})


def _repair_gaps(gaps: Iterable[Gap], step_ids: set[str], report: RepairReport) -> list[Gap]:
    kept_gaps: list[Gap] = []
    for index, gap in enumerate(gaps):
        valid_ids: list[str] = []
        for step_id in gap.step_ids:
            if step_id not in step_ids or step_id in valid_ids:
                report.dropped_gap_references.append((index, step_id))
                continue
            valid_ids.append(step_id)

        if not valid_ids and gap.type not in SYSTEM_LEVEL_GAP_TYPES:
            report.dropped_gaps.append(index)
            continue

        if valid_ids != gap.step_ids:
            gap = gap.model_copy(update={"step_ids": valid_ids})
        kept_gaps.append(gap)
    return kept_gaps


def find_back_edges(steps: Sequence[Step]) -> list[tuple[str, str]]:
    """Find the edges that close cycles in the dependency relation.

    Runs a single depth-first traversal, rooted at each not-yet-visited step
    in input order, treating dependencies as outgoing edges. An edge into a
    step that is still on the traversal stack is a back-edge. The visited set
    is shared across roots, so shared subgraphs are walked once. Removing
    every returned edge leaves the graph acyclic.

    Args:
        steps: Steps with unique ids.

    Returns:
        (step_id, dependency_id) pairs in discovery order.
    """
    graph: dict[str, list[str]] = {step.id: step.dependencies for step in steps}
    visited: set[str] = set()
    on_stack: set[str] = set()
    back_edges: list[tuple[str, str]] = []

    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        # Explicit stack of (node, remaining dependencies) keeps deep chains
        # clear of the interpreter's recursion limit.
        stack = [(root, iter(graph[root]))]
        while stack:
            node, remaining = stack[-1]
            for dep in remaining:
                if dep in on_stack:
                    back_edges.append((node, dep))
                elif dep not in visited and dep in graph:
                    visited.add(dep)
                    on_stack.add(dep)
                    stack.append((dep, iter(graph[dep])))
                    break
            else:
                stack.pop()
                on_stack.discard(node)

    return back_edges


def _break_cycles(steps: list[Step], report: RepairReport) -> list[Step]:
    back_edges = find_back_edges(steps)
    if not back_edges:
        return steps

    report.removed_cycle_edges.extend(back_edges)
    cut = set(back_edges)
    repaired: list[Step] = []
    for step in steps:
        kept = [dep for dep in step.dependencies if (step.id, dep) not in cut]
        if len(kept) != len(step.dependencies):
            step = step.model_copy(update={"dependencies": kept})
        repaired.append(step)
    return repaired


def _clamp_score(step: Step, report: RepairReport) -> Step:
    score = round_half_up(clamp(step.automation_score, 0, 100))
    if isinstance(step.automation_score, int) and score == step.automation_score:
        return step
    if score != step.automation_score:
        report.adjusted_scores.append(step.id)
    return step.model_copy(update={"automation_score": score})


def repair_decomposition(steps: Sequence[Step], gaps: Sequence[Gap]) -> RepairResult:
    """Repair a step/gap graph into a DAG with closed references.

    Input records are never mutated; changed steps and gaps are copies.
    Running the repair on its own output changes nothing.

    Args:
        steps: Schema-valid steps, possibly with duplicates, dangling or
            self-referencing dependencies, and cycles.
        gaps: Schema-valid gaps, possibly referencing unknown steps.

    Returns:
        RepairResult with the repaired steps and gaps and a RepairReport.
    """
    report = RepairReport()

    unique_steps = _dedupe_steps(steps, report)
    step_ids = {step.id for step in unique_steps}
    linked_steps = [_repair_dependencies(step, step_ids, report) for step in unique_steps]
    kept_gaps = _repair_gaps(gaps, step_ids, report)
    acyclic_steps = _break_cycles(linked_steps, report)
    final_steps = [_clamp_score(step, report) for step in acyclic_steps]

    if report.changed:
        logger.info(
            "decomposition_repaired",
            step_count=len(final_steps),
            gap_count=len(kept_gaps),
            **report.summary(),
        )

    return RepairResult(steps=final_steps, gaps=kept_gaps, report=report)
