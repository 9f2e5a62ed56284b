from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from backend.app.models import CandidateStage

FORWARD_PROGRESSION: dict[CandidateStage, Optional[CandidateStage]] = {
    CandidateStage.new: CandidateStage.screening,
    CandidateStage.screening: CandidateStage.interview,
    CandidateStage.interview: CandidateStage.offer,
    CandidateStage.offer: CandidateStage.hired,
    CandidateStage.hired: None,
    CandidateStage.rejected: None,
}

TERMINAL_STAGES: frozenset[CandidateStage] = frozenset(
    {CandidateStage.hired, CandidateStage.rejected}
)


def _build_allowed_transitions() -> dict[CandidateStage, frozenset[CandidateStage]]:
    graph: dict[CandidateStage, frozenset[CandidateStage]] = {}
    for stage in CandidateStage:
        if stage in TERMINAL_STAGES:
            graph[stage] = frozenset()
            continue
        targets = {CandidateStage.rejected}
        forward = FORWARD_PROGRESSION[stage]
        if forward is not None and forward != CandidateStage.new:
            targets.add(forward)
        graph[stage] = frozenset(targets)
    return graph


# Every legal move, stage -> targets. Rejection is reachable from every
# non-terminal stage; everything else follows the forward table.
ALLOWED_TRANSITIONS: dict[CandidateStage, frozenset[CandidateStage]] = (
    _build_allowed_transitions()
)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: Optional[str] = None


def coerce_stage(value: object) -> Optional[CandidateStage]:
    """Resolve a stage member or stage name to a ``CandidateStage``.

    Names match case-insensitively and surrounding whitespace is ignored, so
    ``" screening "`` resolves to ``CandidateStage.screening``. Anything else,
    including non-strings, yields ``None``.
    """
    if isinstance(value, CandidateStage):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    for stage in CandidateStage:
        if stage.value.lower() == normalized:
            return stage
    return None


def is_valid_transition(current: object, target: object) -> bool:
    current_stage = coerce_stage(current)
    target_stage = coerce_stage(target)
    if current_stage is None or target_stage is None:
        return False
    return target_stage in ALLOWED_TRANSITIONS[current_stage]


def describe_invalid_transition(current: object, target: object) -> str:
    current_label = _stage_label(current)
    target_stage = coerce_stage(target)
    if coerce_stage(current) in TERMINAL_STAGES:
        # Same text whatever the target; clients match on it.
        return (
            f"Cannot move candidate from {current_label}. This is a terminal stage. "
            "Candidates can only be moved to 'Rejected' if not already rejected."
        )
    if target_stage == CandidateStage.new:
        return (
            "Cannot move candidate to 'New' stage. "
            "Candidates automatically progress from New after registration."
        )
    return (
        f"Cannot move candidate from {current_label} to {_stage_label(target)}. "
        "Invalid stage transition."
    )


def next_stage(current: object) -> Optional[CandidateStage]:
    current_stage = coerce_stage(current)
    if current_stage is None:
        return None
    return FORWARD_PROGRESSION[current_stage]


def check_transition(current: object, target: object) -> TransitionDecision:
    if is_valid_transition(current, target):
        return TransitionDecision(allowed=True)
    return TransitionDecision(
        allowed=False,
        reason=describe_invalid_transition(current, target),
    )


def legal_targets(current: object) -> frozenset[CandidateStage]:
    current_stage = coerce_stage(current)
    if current_stage is None:
        return frozenset()
    return ALLOWED_TRANSITIONS[current_stage]


def is_terminal(stage: object) -> bool:
    return coerce_stage(stage) in TERMINAL_STAGES


def _stage_label(value: object) -> str:
    stage = coerce_stage(value)
    if stage is not None:
        return stage.value
    return str(value)
