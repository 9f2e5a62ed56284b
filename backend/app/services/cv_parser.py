"""
Plain-text CV parsing.

Pattern heuristics only: contact details, a likely name, location, skills,
years of experience and portfolio links. Text extraction from PDF/DOCX
happens before this module is called.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from backend.app.models import ParsedCv, PortfolioUrls

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_PATTERN = re.compile(
    r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}|\+\d{1,3}\s?\d{1,14}|\d{10,}"
)
NAME_LINE_PATTERN = re.compile(r"^[A-Za-z\s'-]+$")
YEARS_OF_EXPERIENCE_PATTERN = re.compile(r"(\d+)\+?\s*years?\s*(?:of\s*)?experience", re.IGNORECASE)
YEARS_RANGE_PATTERN = re.compile(r"(\d+)\s*[-–]\s*(\d+)\s*years", re.IGNORECASE)
DATE_RANGE_PATTERN = re.compile(r"(\d{4})\s*[-–]\s*(\d{4}|present|current)", re.IGNORECASE)

LOCATION_KEYWORDS = (
    "location",
    "address",
    "city",
    "based in",
    "located in",
    "residence",
    "residing",
)

COMMON_SKILLS = (
    "javascript", "typescript", "python", "java", "c++", "c#", "ruby", "php", "go", "rust",
    "react", "vue", "angular", "node.js", "express", "django", "flask", "spring", "laravel",
    "html", "css", "sass", "less", "tailwind", "bootstrap",
    "mongodb", "postgresql", "mysql", "redis", "elasticsearch",
    "aws", "azure", "gcp", "docker", "kubernetes", "git", "github", "gitlab",
    "figma", "sketch", "adobe", "photoshop", "illustrator",
    "agile", "scrum", "jira", "confluence", "ci/cd", "devops",
)

PORTFOLIO_PATTERNS: dict[str, re.Pattern[str]] = {
    "github": re.compile(r"(?:https?://(?:www\.)?)?github\.com/[A-Za-z0-9-]+", re.IGNORECASE),
    "linkedin": re.compile(r"(?:https?://(?:www\.)?)?linkedin\.com/in/[A-Za-z0-9-]+", re.IGNORECASE),
    "dribbble": re.compile(r"(?:https?://(?:www\.)?)?dribbble\.com/[A-Za-z0-9-]+", re.IGNORECASE),
    "behance": re.compile(r"(?:https?://(?:www\.)?)?behance\.net/[A-Za-z0-9-]+", re.IGNORECASE),
    "stackoverflow": re.compile(
        r"(?:https?://(?:www\.)?)?stackoverflow\.com/users/\d+/[A-Za-z0-9-]+", re.IGNORECASE
    ),
    "medium": re.compile(r"(?:https?://(?:www\.)?)?medium\.com/@[A-Za-z0-9-]+", re.IGNORECASE),
}
LABELLED_PORTFOLIO_PATTERN = re.compile(
    r"(?:portfolio|website|personal site)[:\s]+(https?://\S+)", re.IGNORECASE
)
GENERAL_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[A-Za-z0-9][A-Za-z0-9-]*\.[A-Za-z]{2,}(?:/\S*)?", re.IGNORECASE
)
NON_PORTFOLIO_DOMAINS = re.compile(
    r"(?:^|[/.])(?:gmail|yahoo|outlook|hotmail|facebook|twitter|x|instagram)\.com",
    re.IGNORECASE,
)
PLATFORM_DOMAINS = re.compile(
    r"(?:^|[/.])(?:github\.com|linkedin\.com|dribbble\.com|behance\.net|"
    r"stackoverflow\.com|medium\.com)",
    re.IGNORECASE,
)


def parse_cv_text(
    text: str,
    job_skills: Optional[list[str]] = None,
    *,
    today: Optional[date] = None,
) -> ParsedCv:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    email_match = EMAIL_PATTERN.search(text)
    return ParsedCv(
        name=extract_name(lines),
        email=email_match.group(0) if email_match else None,
        phone=extract_phone(text),
        location=extract_location(lines),
        skills=extract_skills(text, job_skills or []),
        experience_years=extract_experience_years(text, today=today),
        portfolio_urls=extract_portfolio_urls(text),
    )


def extract_name(lines: list[str]) -> Optional[str]:
    for index, line in enumerate(lines[:2]):
        word_count = len(line.split())
        if not 2 <= word_count <= 4 or not NAME_LINE_PATTERN.match(line):
            continue
        lowered = line.lower()
        if index == 0 and ("email" in lowered or "phone" in lowered):
            continue
        return line
    return None


def extract_phone(text: str) -> Optional[str]:
    # Year ranges such as 2019-2023 look like phone fragments; strip them first.
    cleaned = DATE_RANGE_PATTERN.sub(" ", text)
    match = PHONE_PATTERN.search(cleaned)
    if not match:
        return None
    return " ".join(match.group(0).split())


def extract_location(lines: list[str]) -> Optional[str]:
    for line in lines[:15]:
        lowered = line.lower()
        if not any(keyword in lowered for keyword in LOCATION_KEYWORDS):
            continue
        parts = re.split(r"[:\-–]", line, maxsplit=1)
        if len(parts) == 2 and parts[1].strip():
            return parts[1].strip()
    return None


def extract_skills(text: str, job_skills: list[str]) -> list[str]:
    lowered_text = text.lower()
    found: list[str] = []
    seen: set[str] = set()
    for skill in job_skills:
        key = skill.strip().lower()
        if key and key not in seen and _mentions(lowered_text, key):
            found.append(skill.strip())
            seen.add(key)

    for skill in COMMON_SKILLS:
        if skill not in seen and _mentions(lowered_text, skill):
            found.append(skill)
            seen.add(skill)
    return found


def _mentions(lowered_text: str, skill: str) -> bool:
    # Token edges rather than \b: "c++" and "ci/cd" end in non-word characters.
    return re.search(rf"(?<![a-z0-9]){re.escape(skill)}(?![a-z0-9])", lowered_text) is not None


def extract_experience_years(text: str, *, today: Optional[date] = None) -> Optional[int]:
    direct = YEARS_OF_EXPERIENCE_PATTERN.search(text)
    if direct:
        return int(direct.group(1))

    span = YEARS_RANGE_PATTERN.search(text)
    if span:
        low, high = int(span.group(1)), int(span.group(2))
        return round((low + high) / 2)

    current_year = (today or date.today()).year
    total = 0
    matched = False
    for start, end in DATE_RANGE_PATTERN.findall(text):
        matched = True
        end_year = current_year if end.lower() in {"present", "current"} else int(end)
        total += end_year - int(start)
    return total if matched else None


def extract_portfolio_urls(text: str) -> PortfolioUrls:
    urls: dict[str, str] = {}
    for key, pattern in PORTFOLIO_PATTERNS.items():
        match = pattern.search(text)
        if match:
            urls[key] = _with_scheme(match.group(0))

    labelled = LABELLED_PORTFOLIO_PATTERN.search(text)
    if labelled:
        urls["portfolio"] = labelled.group(1)
    else:
        for candidate_url in GENERAL_URL_PATTERN.findall(text):
            if NON_PORTFOLIO_DOMAINS.search(candidate_url):
                continue
            if PLATFORM_DOMAINS.search(candidate_url):
                continue
            urls["website"] = candidate_url
            break
    return PortfolioUrls(**urls)


def _with_scheme(url: str) -> str:
    if url.lower().startswith(("http://", "https://")):
        return url
    return f"https://{url}"
