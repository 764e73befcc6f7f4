"""Before/after comparison of two decompositions of the same workflow."""

from models.schemas import (
    CompareResult,
    Decomposition,
    Gap,
    HealthDelta,
    Step,
    StepChange,
)

# Step fields whose change counts as a modification, in report order
COMPARED_STEP_FIELDS = ("name", "layer", "owner", "automation_score", "tools")


def _gap_key(gap: Gap) -> tuple[str, tuple[str, ...]]:
    return gap.type.value, tuple(sorted(gap.step_ids))


def _changed_fields(before: Step, after: Step) -> list[str]:
    return [name for name in COMPARED_STEP_FIELDS if getattr(before, name) != getattr(after, name)]


def _summarize(
    added: int,
    removed: int,
    modified: int,
    gaps_resolved: int,
    gaps_new: int,
) -> str:
    parts: list[str] = []
    if added:
        parts.append(f"{added} step(s) added")
    if removed:
        parts.append(f"{removed} step(s) removed")
    if modified:
        parts.append(f"{modified} step(s) modified")
    if gaps_resolved:
        parts.append(f"{gaps_resolved} gap(s) resolved")
    if gaps_new:
        parts.append(f"{gaps_new} new gap(s)")
    return ", ".join(parts) + "." if parts else "No changes detected."


def compare_decompositions(before: Decomposition, after: Decomposition) -> CompareResult:
    """Diff two decompositions by step id and by gap (type, step ids).

    Args:
        before: The earlier analysis.
        after: The later analysis, typically a re-analysis of ``before``.

    Returns:
        CompareResult with step and gap differences and the health delta.
    """
    before_steps = {step.id: step for step in before.steps}
    after_ids = {step.id for step in after.steps}

    added = [step for step in after.steps if step.id not in before_steps]
    removed = [step for step in before.steps if step.id not in after_ids]
    modified: list[StepChange] = []
    unchanged: list[Step] = []
    for step in after.steps:
        previous = before_steps.get(step.id)
        if previous is None:
            continue
        changes = _changed_fields(previous, step)
        if changes:
            modified.append(StepChange(step=step, before_step=previous, changes=changes))
        else:
            unchanged.append(step)

    before_gap_keys = {_gap_key(gap) for gap in before.gaps}
    after_gap_keys = {_gap_key(gap) for gap in after.gaps}
    gaps_resolved = [gap for gap in before.gaps if _gap_key(gap) not in after_gap_keys]
    gaps_new = [gap for gap in after.gaps if _gap_key(gap) not in before_gap_keys]
    gaps_persistent = [gap for gap in after.gaps if _gap_key(gap) in before_gap_keys]

    health_delta = HealthDelta(
        complexity=after.health.complexity - before.health.complexity,
        fragility=after.health.fragility - before.health.fragility,
        automation_potential=after.health.automation_potential
        - before.health.automation_potential,
        team_load_balance=after.health.team_load_balance - before.health.team_load_balance,
    )

    return CompareResult(
        added=added,
        removed=removed,
        modified=modified,
        unchanged=unchanged,
        gaps_resolved=gaps_resolved,
        gaps_new=gaps_new,
        gaps_persistent=gaps_persistent,
        health_delta=health_delta,
        health_before=before.health,
        health_after=after.health,
        summary=_summarize(
            len(added), len(removed), len(modified), len(gaps_resolved), len(gaps_new)
        ),
    )
