from __future__ import annotations

import math
from typing import Iterable, Optional

NO_JOB_SKILLS_SCORE = 50


def _round_half_up(value: float) -> int:
    # Halves round up, never to the even neighbour.
    return math.floor(value + 0.5)


def _normalize_skill(value: str) -> str:
    return value.strip().lower()


def _skills_overlap(candidate_skill: str, job_skill: str) -> bool:
    left = _normalize_skill(candidate_skill)
    right = _normalize_skill(job_skill)
    if not left or not right:
        return False
    return left in right or right in left


def skill_match_score(candidate_skills: list[str], job_skills: list[str]) -> tuple[int, int]:
    """Score 0-100 for how well candidate skills cover the job's skills.

    Returns ``(score, matching_count)``. Under 40% coverage the score stays
    below 50, so a passing score needs a real overlap.
    """
    if not job_skills:
        return NO_JOB_SKILLS_SCORE, 0
    if not candidate_skills:
        return 0, 0

    matching_count = sum(
        1
        for skill in candidate_skills
        if any(_skills_overlap(skill, job_skill) for job_skill in job_skills)
    )
    match_percentage = (matching_count / len(job_skills)) * 100

    if match_percentage >= 80:
        score = 85 + _round_half_up((match_percentage - 80) / 20 * 15)
    elif match_percentage >= 60:
        score = 70 + _round_half_up((match_percentage - 60) / 20 * 14)
    elif match_percentage >= 40:
        score = 50 + _round_half_up((match_percentage - 40) / 20 * 19)
    else:
        score = _round_half_up(match_percentage * 1.2)
    return min(100, max(0, score)), matching_count


def skill_tags(candidate_skills: list[str], job_skills: list[str]) -> tuple[list[str], list[str]]:
    candidate_set = {_normalize_skill(skill) for skill in candidate_skills if skill.strip()}
    matched: list[str] = []
    missing: list[str] = []
    for job_skill in job_skills:
        if _normalize_skill(job_skill) in candidate_set:
            matched.append(job_skill)
        else:
            missing.append(job_skill)
    return matched, missing


def average_match_score(scores: Iterable[Optional[int]]) -> int:
    positive = [score for score in scores if score]
    if not positive:
        return 0
    return _round_half_up(sum(positive) / len(positive))
