from __future__ import annotations

from itertools import product

import pytest

from backend.app.models import CandidateStage
from backend.app.services.workflow import (
    ALLOWED_TRANSITIONS,
    check_transition,
    coerce_stage,
    describe_invalid_transition,
    is_terminal,
    is_valid_transition,
    legal_targets,
    next_stage,
)

NEW = CandidateStage.new
SCREENING = CandidateStage.screening
INTERVIEW = CandidateStage.interview
OFFER = CandidateStage.offer
HIRED = CandidateStage.hired
REJECTED = CandidateStage.rejected

ALL_PAIRS = list(product(CandidateStage, CandidateStage))
LEGAL_PAIRS = {
    (NEW, SCREENING),
    (SCREENING, INTERVIEW),
    (INTERVIEW, OFFER),
    (OFFER, HIRED),
    (NEW, REJECTED),
    (SCREENING, REJECTED),
    (INTERVIEW, REJECTED),
    (OFFER, REJECTED),
}


def test_stage_enumeration_is_closed_with_wire_values() -> None:
    assert [stage.value for stage in CandidateStage] == [
        "New",
        "Screening",
        "Interview",
        "Offer",
        "Hired",
        "Rejected",
    ]


@pytest.mark.parametrize("current,target", ALL_PAIRS)
def test_validity_matches_the_legal_move_table(current, target) -> None:
    assert is_valid_transition(current, target) is ((current, target) in LEGAL_PAIRS)


@pytest.mark.parametrize("current,target", ALL_PAIRS)
def test_check_transition_reason_only_when_rejected(current, target) -> None:
    decision = check_transition(current, target)
    assert decision.allowed is is_valid_transition(current, target)
    if decision.allowed:
        assert decision.reason is None
    else:
        assert decision.reason == describe_invalid_transition(current, target)


@pytest.mark.parametrize("current,target", ALL_PAIRS)
def test_guard_is_deterministic(current, target) -> None:
    first = [check_transition(current, target) for _ in range(3)]
    assert first[0] == first[1] == first[2]


@pytest.mark.parametrize("current", list(CandidateStage))
def test_same_stage_is_never_allowed(current) -> None:
    assert not is_valid_transition(current, current)


@pytest.mark.parametrize("current", [NEW, SCREENING, INTERVIEW, OFFER])
def test_rejection_reachable_from_every_non_terminal_stage(current) -> None:
    assert is_valid_transition(current, REJECTED)


@pytest.mark.parametrize("target", list(CandidateStage))
def test_terminal_stages_have_no_exits(target) -> None:
    assert not is_valid_transition(HIRED, target)
    assert not is_valid_transition(REJECTED, target)


@pytest.mark.parametrize("current", list(CandidateStage))
def test_nothing_moves_back_to_new(current) -> None:
    assert not is_valid_transition(current, NEW)


def test_hired_only_reachable_from_offer() -> None:
    sources = {
        current
        for current, target in ALL_PAIRS
        if target == HIRED and is_valid_transition(current, target)
    }
    assert sources == {OFFER}


def test_next_stage_forward_table() -> None:
    assert next_stage(NEW) == SCREENING
    assert next_stage(SCREENING) == INTERVIEW
    assert next_stage(INTERVIEW) == OFFER
    assert next_stage(OFFER) == HIRED
    assert next_stage(HIRED) is None
    assert next_stage(REJECTED) is None


@pytest.mark.parametrize("current", list(CandidateStage))
def test_next_stage_is_always_a_legal_move(current) -> None:
    forward = next_stage(current)
    if forward is not None:
        assert is_valid_transition(current, forward)


def test_generic_message_for_skip_ahead() -> None:
    assert describe_invalid_transition(INTERVIEW, HIRED) == (
        "Cannot move candidate from Interview to Hired. Invalid stage transition."
    )


def test_backward_move_uses_generic_message() -> None:
    assert describe_invalid_transition(OFFER, SCREENING) == (
        "Cannot move candidate from Offer to Screening. Invalid stage transition."
    )


def test_new_target_message() -> None:
    assert describe_invalid_transition(SCREENING, NEW) == (
        "Cannot move candidate to 'New' stage. "
        "Candidates automatically progress from New after registration."
    )


@pytest.mark.parametrize("target", list(CandidateStage))
def test_terminal_message_wins_whatever_the_target(target) -> None:
    assert describe_invalid_transition(HIRED, target) == (
        "Cannot move candidate from Hired. This is a terminal stage. "
        "Candidates can only be moved to 'Rejected' if not already rejected."
    )
    assert describe_invalid_transition(REJECTED, target).startswith(
        "Cannot move candidate from Rejected. This is a terminal stage."
    )


@pytest.mark.parametrize(
    "current,target",
    [
        ("Bogus", "Screening"),
        ("New", "Bogus"),
        (None, "Screening"),
        ("New", None),
        (3, 4),
        ("", ""),
    ],
)
def test_values_outside_the_enumeration_are_not_allowed(current, target) -> None:
    assert is_valid_transition(current, target) is False
    decision = check_transition(current, target)
    assert decision.allowed is False
    assert decision.reason


def test_unknown_value_reason_names_the_raw_input() -> None:
    assert describe_invalid_transition("Bogus", SCREENING) == (
        "Cannot move candidate from Bogus to Screening. Invalid stage transition."
    )


def test_next_stage_of_unknown_value_is_none() -> None:
    assert next_stage("Bogus") is None
    assert next_stage(None) is None


def test_coerce_stage_accepts_names_case_insensitively() -> None:
    assert coerce_stage("screening") == SCREENING
    assert coerce_stage("  Offer ") == OFFER
    assert coerce_stage(HIRED) == HIRED
    assert coerce_stage("hire") is None
    assert coerce_stage(1) is None


def test_string_stage_names_follow_the_same_rules() -> None:
    assert is_valid_transition("New", "Screening")
    assert not is_valid_transition("Interview", "Hired")
    assert is_valid_transition("new", " screening ")
    assert not is_valid_transition("hired", "OFFER")


def test_legal_targets_match_the_graph() -> None:
    for stage in CandidateStage:
        assert legal_targets(stage) == ALLOWED_TRANSITIONS[stage]
        assert legal_targets(stage) == {
            target for target in CandidateStage if (stage, target) in LEGAL_PAIRS
        }
    assert legal_targets("Bogus") == frozenset()


def test_terminal_flags() -> None:
    assert is_terminal(HIRED)
    assert is_terminal("rejected")
    assert not is_terminal(OFFER)
    assert not is_terminal("Bogus")
