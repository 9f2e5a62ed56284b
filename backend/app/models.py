from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def utc_now() -> datetime:
    return datetime.utcnow()


class CandidateStage(str, Enum):
    new = "New"
    screening = "Screening"
    interview = "Interview"
    offer = "Offer"
    hired = "Hired"
    rejected = "Rejected"


class CandidateSource(str, Enum):
    ai_sourced = "ai_sourced"
    direct_application = "direct_application"
    email_application = "email_application"
    referral = "referral"
    scraped = "scraped"


class JobStatus(str, Enum):
    active = "Active"
    closed = "Closed"
    draft = "Draft"


class JobType(str, Enum):
    full_time = "Full-time"
    contract = "Contract"
    part_time = "Part-time"


class OfferStatus(str, Enum):
    draft = "draft"
    sent = "sent"
    viewed = "viewed"
    negotiating = "negotiating"
    accepted = "accepted"
    declined = "declined"
    expired = "expired"


class SalaryPeriod(str, Enum):
    hourly = "hourly"
    monthly = "monthly"
    yearly = "yearly"


class NotificationType(str, Enum):
    candidate_added = "candidate_added"
    candidate_moved = "candidate_moved"
    cv_parsed = "cv_parsed"
    offer_sent = "offer_sent"
    offer_accepted = "offer_accepted"
    offer_declined = "offer_declined"
    offer_negotiating = "offer_negotiating"
    offer_expired = "offer_expired"


class NotificationCategory(str, Enum):
    candidate = "candidate"
    offer = "offer"


class PortfolioUrls(BaseModel):
    github: Optional[str] = None
    linkedin: Optional[str] = None
    portfolio: Optional[str] = None
    dribbble: Optional[str] = None
    behance: Optional[str] = None
    website: Optional[str] = None
    stackoverflow: Optional[str] = None
    medium: Optional[str] = None


class JobCreateRequest(BaseModel):
    title: str = Field(min_length=2, max_length=120)
    department: str = Field(default="General", max_length=120)
    location: str = Field(default="Remote", max_length=120)
    job_type: JobType = JobType.full_time
    status: JobStatus = JobStatus.active
    description: str = Field(default="", max_length=5000)
    required_skills: list[str] = Field(default_factory=list)
    salary_range: Optional[str] = Field(default=None, max_length=120)
    remote: bool = False


class JobResponse(BaseModel):
    job_id: str
    title: str
    department: str
    location: str
    job_type: JobType
    status: JobStatus
    required_skills: list[str]
    applicants_count: int
    created_at_utc: datetime


class CandidateCreateRequest(BaseModel):
    job_id: str
    name: str = Field(min_length=2, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    role: str = Field(default="", max_length=120)
    location: str = Field(default="", max_length=120)
    skills: list[str] = Field(default_factory=list)
    experience_years: Optional[float] = Field(default=None, ge=0, le=60)
    source: CandidateSource = CandidateSource.direct_application

    @model_validator(mode="after")
    def validate_email(self) -> "CandidateCreateRequest":
        if self.email is not None:
            self.email = self.email.strip() or None
        if self.email and "@" not in self.email:
            raise ValueError("email must contain '@'")
        return self


class CandidateCreateResponse(BaseModel):
    candidate_id: str
    job_id: str
    stage: CandidateStage
    deduplicated: bool
    ai_match_score: Optional[int]


class CandidateItem(BaseModel):
    candidate_id: str
    job_id: str
    name: str
    email: Optional[str]
    role: str
    location: str
    stage: CandidateStage
    skills: list[str]
    experience_years: Optional[float]
    source: CandidateSource
    ai_match_score: Optional[int]
    portfolio_urls: PortfolioUrls
    version: int
    applied_at_utc: datetime
    updated_at_utc: datetime


class StageMoveRequest(BaseModel):
    to_stage: CandidateStage
    expected_stage: Optional[CandidateStage] = None
    reason: str = Field(default="manual_move", min_length=2, max_length=200)


class StageAdvanceRequest(BaseModel):
    expected_stage: Optional[CandidateStage] = None


class StageMoveResponse(BaseModel):
    candidate_id: str
    from_stage: CandidateStage
    stage: CandidateStage
    message: str
    counts: dict[CandidateStage, int]


class BulkAdvanceRequest(BaseModel):
    candidate_ids: list[str] = Field(min_length=1, max_length=200)
    source_stage: CandidateStage


class BulkRejectRequest(BaseModel):
    candidate_ids: list[str] = Field(min_length=1, max_length=200)


class BulkMoveItem(BaseModel):
    candidate_id: str
    moved: bool
    stage: Optional[CandidateStage]
    detail: Optional[str] = None


class BulkMoveResponse(BaseModel):
    moved: int
    skipped: int
    results: list[BulkMoveItem]


class TransitionCheckRequest(BaseModel):
    current: str = Field(max_length=60)
    target: str = Field(max_length=60)


class TransitionCheckResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class StageDescriptor(BaseModel):
    stage: CandidateStage
    next_stage: Optional[CandidateStage]
    terminal: bool
    legal_targets: list[CandidateStage]


class SkillTags(BaseModel):
    matched: list[str]
    missing: list[str]


class BoardCard(BaseModel):
    candidate_id: str
    name: str
    role: str
    location: str
    ai_match_score: Optional[int]
    top_skills: list[str]
    extra_skill_count: int
    skill_tags: SkillTags
    next_stage: Optional[CandidateStage]
    applied_at_utc: datetime


class BoardColumn(BaseModel):
    stage: CandidateStage
    count: int
    next_stage: Optional[CandidateStage]
    cards: list[BoardCard]


class BoardResponse(BaseModel):
    job_id: str
    job_title: str
    counts: dict[CandidateStage, int]
    columns: list[BoardColumn]


class PipelineSummaryResponse(BaseModel):
    job_id: Optional[str]
    total: int
    qualified: int
    waitlist: int
    average_match_score: int
    counts: dict[CandidateStage, int]


class CvUploadRequest(BaseModel):
    text: str = Field(min_length=20, max_length=200_000)
    file_name: Optional[str] = Field(default=None, max_length=255)


class CvParseRequest(BaseModel):
    text: str = Field(min_length=1, max_length=200_000)
    job_skills: list[str] = Field(default_factory=list)


class ParsedCv(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    skills: list[str] = Field(default_factory=list)
    experience_years: Optional[int] = None
    portfolio_urls: PortfolioUrls = Field(default_factory=PortfolioUrls)


class CvUploadResponse(BaseModel):
    candidate_id: str
    stage: CandidateStage
    moved_to_screening: bool
    ai_match_score: Optional[int]
    parsed: ParsedCv


class OfferCreateRequest(BaseModel):
    candidate_id: str
    position_title: Optional[str] = Field(default=None, max_length=120)
    salary_amount: Optional[float] = Field(default=None, gt=0)
    salary_currency: str = Field(default="USD", min_length=3, max_length=3)
    salary_period: SalaryPeriod = SalaryPeriod.yearly
    start_date: Optional[date] = None
    expires_at: Optional[date] = None
    benefits: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_dates(self) -> "OfferCreateRequest":
        if self.start_date and self.expires_at and self.expires_at > self.start_date:
            raise ValueError("expires_at cannot be after start_date")
        return self


class OfferRespondRequest(BaseModel):
    response: Optional[str] = Field(default=None, max_length=2000)


class OfferNegotiateRequest(BaseModel):
    notes: str = Field(min_length=2, max_length=2000)
    salary_amount: Optional[float] = Field(default=None, gt=0)
    benefits: Optional[list[str]] = None
    start_date: Optional[date] = None


class NegotiationRound(BaseModel):
    at_utc: datetime
    notes: str
    salary_amount: Optional[float] = None
    benefits: Optional[list[str]] = None
    start_date: Optional[date] = None


class OfferItem(BaseModel):
    offer_id: str
    candidate_id: str
    job_id: str
    position_title: str
    salary_amount: Optional[float]
    salary_currency: str
    salary_period: SalaryPeriod
    start_date: Optional[date]
    expires_at: Optional[date]
    benefits: list[str]
    status: OfferStatus
    sent_at_utc: Optional[datetime]
    viewed_at_utc: Optional[datetime]
    responded_at_utc: Optional[datetime]
    response: Optional[str]
    created_at_utc: datetime
    negotiation_history: list[NegotiationRound]


class OfferActionResponse(BaseModel):
    offer: OfferItem
    candidate_stage: CandidateStage
    stage_changed: bool
    detail: Optional[str] = None


class NotificationItem(BaseModel):
    notification_id: str
    type: NotificationType
    category: NotificationCategory
    title: str
    desc: str
    unread: bool
    created_at_utc: datetime


class ActivityItem(BaseModel):
    activity_id: str
    action: str
    target: str
    target_to: Optional[str]
    candidate_id: Optional[str]
    created_at_utc: datetime


class JobRecord(BaseModel):
    id: str
    title: str
    department: str
    location: str
    job_type: JobType
    status: JobStatus
    description: str
    required_skills: list[str]
    salary_range: Optional[str]
    remote: bool
    created_at_utc: datetime


class CandidateRecord(BaseModel):
    id: str
    job_id: str
    name: str
    email: Optional[str]
    phone: Optional[str] = None
    role: str
    location: str
    stage: CandidateStage = CandidateStage.new
    skills: list[str]
    experience_years: Optional[float]
    source: CandidateSource
    ai_match_score: Optional[int] = None
    portfolio_urls: PortfolioUrls = Field(default_factory=PortfolioUrls)
    cv_file_name: Optional[str] = None
    version: int = 1
    applied_at_utc: datetime
    updated_at_utc: datetime


class OfferRecord(BaseModel):
    id: str
    candidate_id: str
    job_id: str
    position_title: str
    salary_amount: Optional[float]
    salary_currency: str
    salary_period: SalaryPeriod
    start_date: Optional[date]
    expires_at: Optional[date]
    benefits: list[str]
    notes: Optional[str]
    status: OfferStatus = OfferStatus.draft
    sent_at_utc: Optional[datetime] = None
    viewed_at_utc: Optional[datetime] = None
    responded_at_utc: Optional[datetime] = None
    response: Optional[str] = None
    created_at_utc: datetime
    updated_at_utc: datetime
    negotiation_history: list[NegotiationRound] = Field(default_factory=list)


class NotificationRecord(BaseModel):
    id: str
    type: NotificationType
    category: NotificationCategory
    title: str
    desc: str
    unread: bool = True
    created_at_utc: datetime


class ActivityRecord(BaseModel):
    id: str
    action: str
    target: str
    target_to: Optional[str]
    candidate_id: Optional[str]
    created_at_utc: datetime
