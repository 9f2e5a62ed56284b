from __future__ import annotations

from difflib import SequenceMatcher
from typing import Optional

from backend.app.models import CandidateRecord


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(value.strip().lower().split())


def is_probable_duplicate(
    existing: CandidateRecord,
    *,
    job_id: str,
    name: str,
    email: Optional[str],
) -> bool:
    if existing.job_id != job_id:
        return False

    existing_email = normalize(existing.email)
    incoming_email = normalize(email)
    if existing_email and incoming_email:
        return existing_email == incoming_email

    existing_name = normalize(existing.name)
    incoming_name = normalize(name)
    if not existing_name or not incoming_name:
        return False

    return SequenceMatcher(a=existing_name, b=incoming_name).ratio() >= 0.9
