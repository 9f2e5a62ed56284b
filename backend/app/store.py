from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from backend.app.models import (
    ActivityRecord,
    BulkMoveItem,
    CandidateCreateRequest,
    CandidateRecord,
    CandidateStage,
    JobCreateRequest,
    JobRecord,
    JobStatus,
    NegotiationRound,
    NotificationCategory,
    NotificationRecord,
    NotificationType,
    OfferCreateRequest,
    OfferNegotiateRequest,
    OfferRecord,
    OfferStatus,
    ParsedCv,
    PortfolioUrls,
    utc_now,
)
from backend.app.services.dedupe import is_probable_duplicate, normalize
from backend.app.services.scoring import average_match_score, skill_match_score
from backend.app.services.workflow import (
    TERMINAL_STAGES,
    check_transition,
    describe_invalid_transition,
    next_stage,
)

if TYPE_CHECKING:
    from backend.app.observability import MetricsRegistry
    from backend.app.persistence import SnapshotPersistence

logger = logging.getLogger("coreflow")

ACTIVE_OFFER_STATUSES = frozenset(
    {
        OfferStatus.draft,
        OfferStatus.sent,
        OfferStatus.viewed,
        OfferStatus.negotiating,
        OfferStatus.accepted,
    }
)
OPEN_OFFER_STATUSES = frozenset(
    {OfferStatus.draft, OfferStatus.sent, OfferStatus.viewed, OfferStatus.negotiating}
)
RESPONDABLE_OFFER_STATUSES = frozenset(
    {OfferStatus.sent, OfferStatus.viewed, OfferStatus.negotiating}
)
QUALIFIED_STAGES = frozenset(
    {CandidateStage.interview, CandidateStage.offer, CandidateStage.hired}
)

NOTIFICATION_CATEGORIES = {
    NotificationType.candidate_added: NotificationCategory.candidate,
    NotificationType.candidate_moved: NotificationCategory.candidate,
    NotificationType.cv_parsed: NotificationCategory.candidate,
    NotificationType.offer_sent: NotificationCategory.offer,
    NotificationType.offer_accepted: NotificationCategory.offer,
    NotificationType.offer_declined: NotificationCategory.offer,
    NotificationType.offer_negotiating: NotificationCategory.offer,
    NotificationType.offer_expired: NotificationCategory.offer,
}


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class StageTransitionError(StoreConflictError):
    def __init__(self, current: CandidateStage, target: CandidateStage, message: str) -> None:
        super().__init__(message)
        self.current = current
        self.target = target


@dataclass(frozen=True)
class StageMove:
    """Outcome of one applied move, captured while the store lock is held."""

    candidate_id: str
    candidate_name: str
    job_id: str
    from_stage: CandidateStage
    to_stage: CandidateStage
    version: int
    counts: dict[CandidateStage, int]


class InMemoryStore:
    def __init__(
        self,
        persistence: Optional["SnapshotPersistence"] = None,
        *,
        metrics: Optional["MetricsRegistry"] = None,
        offer_stage_requires_offer: bool = False,
        decline_rejects_candidate: bool = True,
    ) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.metrics = metrics
        self.offer_stage_requires_offer = offer_stage_requires_offer
        self.decline_rejects_candidate = decline_rejects_candidate
        self.jobs: dict[str, JobRecord] = {}
        self.candidates: dict[str, CandidateRecord] = {}
        self.offers: dict[str, OfferRecord] = {}
        self.notifications: list[NotificationRecord] = []
        self.activity: list[ActivityRecord] = []

        if self.persistence:
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)

    # Jobs

    def create_job(self, request: JobCreateRequest) -> JobRecord:
        with self._lock:
            job = JobRecord(
                id=new_id("job"),
                title=request.title.strip(),
                department=request.department.strip(),
                location=request.location.strip(),
                job_type=request.job_type,
                status=request.status,
                description=request.description,
                required_skills=[skill.strip() for skill in request.required_skills if skill.strip()],
                salary_range=request.salary_range,
                remote=request.remote,
                created_at_utc=utc_now(),
            )
            self.jobs[job.id] = job
            self._add_activity(action="job_created", target=job.title)
            self._persist_state()
            return job

    def get_job(self, job_id: str) -> JobRecord:
        job = self.jobs.get(job_id)
        if not job:
            raise StoreNotFoundError(f"job not found: {job_id}")
        return job

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[JobRecord]:
        with self._lock:
            jobs = [job for job in self.jobs.values() if status is None or job.status == status]
        return sorted(jobs, key=lambda job: job.created_at_utc, reverse=True)

    def applicants_count(self, job_id: str) -> int:
        with self._lock:
            return sum(1 for candidate in self.candidates.values() if candidate.job_id == job_id)

    # Candidates

    def create_candidate(self, request: CandidateCreateRequest) -> tuple[CandidateRecord, bool]:
        with self._lock:
            job = self.get_job(request.job_id)
            for candidate in self.candidates.values():
                if is_probable_duplicate(
                    candidate,
                    job_id=job.id,
                    name=request.name,
                    email=request.email,
                ):
                    return candidate, True

            skills = [skill.strip() for skill in request.skills if skill.strip()]
            score = skill_match_score(skills, job.required_skills)[0] if skills else None
            now = utc_now()
            candidate = CandidateRecord(
                id=new_id("cand"),
                job_id=job.id,
                name=request.name.strip(),
                email=request.email,
                role=request.role.strip() or job.title,
                location=request.location.strip(),
                skills=skills,
                experience_years=request.experience_years,
                source=request.source,
                ai_match_score=score,
                applied_at_utc=now,
                updated_at_utc=now,
            )
            self.candidates[candidate.id] = candidate
            self._add_activity(
                action="candidate_added",
                target=candidate.name,
                target_to=job.title,
                candidate_id=candidate.id,
            )
            self._add_notification(
                NotificationType.candidate_added,
                "New Candidate Added",
                f"{candidate.name} has been added to your candidate pool.",
            )
            self._persist_state()
            return candidate, False

    def get_candidate(self, candidate_id: str) -> CandidateRecord:
        candidate = self.candidates.get(candidate_id)
        if not candidate:
            raise StoreNotFoundError(f"candidate not found: {candidate_id}")
        return candidate

    def list_candidates(
        self,
        *,
        job_id: Optional[str] = None,
        stage: Optional[CandidateStage] = None,
        search: Optional[str] = None,
        limit: int = 50,
    ) -> list[CandidateRecord]:
        safe_limit = max(1, min(limit, 500))
        needle = normalize(search)
        with self._lock:
            matches = []
            for candidate in self.candidates.values():
                if job_id and candidate.job_id != job_id:
                    continue
                if stage and candidate.stage != stage:
                    continue
                if needle:
                    haystack = " ".join(
                        [candidate.name, candidate.email or "", candidate.role, *candidate.skills]
                    ).lower()
                    if needle not in haystack:
                        continue
                matches.append(candidate)
        matches.sort(key=lambda candidate: candidate.applied_at_utc, reverse=True)
        return matches[:safe_limit]

    def move_candidate(
        self,
        candidate_id: str,
        to_stage: CandidateStage,
        *,
        expected_stage: Optional[CandidateStage] = None,
        reason: str = "manual_move",
    ) -> StageMove:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            self._check_expected_stage(candidate, expected_stage)
            return self._apply_move(candidate, to_stage, reason=reason)

    def advance_candidate(
        self,
        candidate_id: str,
        *,
        expected_stage: Optional[CandidateStage] = None,
        reason: str = "next_stage",
    ) -> StageMove:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            self._check_expected_stage(candidate, expected_stage)
            target = next_stage(candidate.stage)
            if target is None:
                self._record_transition(applied=False)
                raise StageTransitionError(
                    candidate.stage,
                    candidate.stage,
                    describe_invalid_transition(candidate.stage, candidate.stage),
                )
            return self._apply_move(candidate, target, reason=reason)

    def bulk_advance(
        self, candidate_ids: list[str], source_stage: CandidateStage
    ) -> list[BulkMoveItem]:
        target = next_stage(source_stage)
        results: list[BulkMoveItem] = []
        for candidate_id in dict.fromkeys(candidate_ids):
            if target is None:
                results.append(
                    BulkMoveItem(
                        candidate_id=candidate_id,
                        moved=False,
                        stage=self._current_stage(candidate_id),
                        detail=describe_invalid_transition(source_stage, source_stage),
                    )
                )
                continue
            results.append(
                self._bulk_move_one(
                    candidate_id,
                    target,
                    expected_stage=source_stage,
                    reason="bulk_move",
                )
            )
        return results

    def bulk_reject(self, candidate_ids: list[str]) -> list[BulkMoveItem]:
        return [
            self._bulk_move_one(candidate_id, CandidateStage.rejected, reason="bulk_reject")
            for candidate_id in dict.fromkeys(candidate_ids)
        ]

    def attach_cv(
        self,
        candidate_id: str,
        parsed: ParsedCv,
        *,
        file_name: Optional[str] = None,
    ) -> tuple[CandidateRecord, bool]:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            job = self.get_job(candidate.job_id)
            if not candidate.email and parsed.email:
                candidate.email = parsed.email
            if not candidate.phone and parsed.phone:
                candidate.phone = parsed.phone
            if not candidate.location and parsed.location:
                candidate.location = parsed.location
            if candidate.experience_years is None and parsed.experience_years is not None:
                candidate.experience_years = float(parsed.experience_years)
            known = {skill.lower() for skill in candidate.skills}
            for skill in parsed.skills:
                if skill.lower() not in known:
                    candidate.skills.append(skill)
                    known.add(skill.lower())
            merged_urls = candidate.portfolio_urls.model_dump(exclude_none=True)
            for key, value in parsed.portfolio_urls.model_dump(exclude_none=True).items():
                merged_urls.setdefault(key, value)
            candidate.portfolio_urls = PortfolioUrls.model_validate(merged_urls)
            candidate.ai_match_score = skill_match_score(candidate.skills, job.required_skills)[0]
            candidate.cv_file_name = file_name or candidate.cv_file_name
            candidate.updated_at_utc = utc_now()
            self._add_notification(
                NotificationType.cv_parsed,
                "CV Parsed and Profile Created",
                f"CV for {candidate.name} has been successfully parsed and profile created.",
            )

            moved = False
            if candidate.stage == CandidateStage.new:
                self._apply_move(candidate, CandidateStage.screening, reason="cv_uploaded")
                moved = True
            else:
                self._persist_state()
            return candidate, moved

    # Pipeline aggregates

    def pipeline_counts(self, job_id: Optional[str] = None) -> dict[CandidateStage, int]:
        counts = {stage: 0 for stage in CandidateStage}
        with self._lock:
            for candidate in self.candidates.values():
                if job_id and candidate.job_id != job_id:
                    continue
                counts[candidate.stage] += 1
        return counts

    def pipeline_summary(self, job_id: Optional[str] = None) -> dict:
        with self._lock:
            candidates = [
                candidate
                for candidate in self.candidates.values()
                if not job_id or candidate.job_id == job_id
            ]
            counts = self.pipeline_counts(job_id)
        return {
            "job_id": job_id,
            "total": len(candidates),
            "qualified": sum(counts[stage] for stage in QUALIFIED_STAGES),
            "waitlist": counts[CandidateStage.new],
            "average_match_score": average_match_score(
                candidate.ai_match_score for candidate in candidates
            ),
            "counts": counts,
        }

    def job_board(
        self, job_id: str
    ) -> tuple[JobRecord, dict[CandidateStage, list[CandidateRecord]], dict[CandidateStage, int]]:
        """Every candidate of a job grouped by stage, plus the stage counts.

        Both are read under one lock hold and the cards are copies, so the
        columns always agree with the counts.
        """
        with self._lock:
            job = self.get_job(job_id)
            columns: dict[CandidateStage, list[CandidateRecord]] = {
                stage: [] for stage in CandidateStage
            }
            for candidate in self.candidates.values():
                if candidate.job_id == job.id:
                    columns[candidate.stage].append(candidate.model_copy(deep=True))
            counts = self.pipeline_counts(job.id)
        for cards in columns.values():
            cards.sort(key=lambda candidate: candidate.applied_at_utc, reverse=True)
        return job, columns, counts

    # Offers

    def create_offer(self, request: OfferCreateRequest) -> OfferRecord:
        with self._lock:
            candidate = self.get_candidate(request.candidate_id)
            self._expire_due_offers()
            if candidate.stage in TERMINAL_STAGES:
                raise StoreConflictError(
                    f"offer cannot be created for candidate in stage: {candidate.stage.value}"
                )
            for offer in self.offers.values():
                if offer.candidate_id == candidate.id and offer.status in ACTIVE_OFFER_STATUSES:
                    return offer
            job = self.get_job(candidate.job_id)
            now = utc_now()
            offer = OfferRecord(
                id=new_id("off"),
                candidate_id=candidate.id,
                job_id=job.id,
                position_title=(request.position_title or job.title).strip(),
                salary_amount=request.salary_amount,
                salary_currency=request.salary_currency.upper(),
                salary_period=request.salary_period,
                start_date=request.start_date,
                expires_at=request.expires_at,
                benefits=request.benefits,
                notes=request.notes,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.offers[offer.id] = offer
            self._add_activity(
                action="offer_created",
                target=candidate.name,
                target_to=offer.position_title,
                candidate_id=candidate.id,
            )
            self._persist_state()
            return offer

    def get_offer(self, offer_id: str) -> OfferRecord:
        with self._lock:
            offer = self._find_offer(offer_id)
            if self._expire_if_due(offer):
                self._persist_state()
            return offer

    def list_offers(
        self,
        *,
        candidate_id: Optional[str] = None,
        status: Optional[OfferStatus] = None,
    ) -> list[OfferRecord]:
        with self._lock:
            self._expire_due_offers()
            offers = [
                offer
                for offer in self.offers.values()
                if (candidate_id is None or offer.candidate_id == candidate_id)
                and (status is None or offer.status == status)
            ]
        return sorted(offers, key=lambda offer: offer.created_at_utc, reverse=True)

    def send_offer(self, offer_id: str) -> tuple[OfferRecord, CandidateRecord, bool, Optional[str]]:
        with self._lock:
            offer = self._offer_for_action(offer_id)
            candidate = self.get_candidate(offer.candidate_id)
            if offer.status == OfferStatus.sent:
                return offer, candidate, False, None
            if offer.status != OfferStatus.draft:
                raise StoreConflictError(f"offer cannot be sent from status: {offer.status.value}")
            now = utc_now()
            offer.status = OfferStatus.sent
            offer.sent_at_utc = now
            offer.updated_at_utc = now
            self._add_notification(
                NotificationType.offer_sent,
                "Offer Sent",
                f"{candidate.name} has been sent an offer for {offer.position_title}.",
            )
            stage_changed, detail = self._follow_offer_with_stage(
                candidate, CandidateStage.offer, reason="offer_sent"
            )
            self._persist_state()
            return offer, candidate, stage_changed, detail

    def view_offer(self, offer_id: str) -> OfferRecord:
        with self._lock:
            offer = self._offer_for_action(offer_id)
            if offer.status == OfferStatus.draft:
                raise StoreConflictError("offer cannot be viewed from status: draft")
            if offer.status != OfferStatus.sent:
                return offer
            candidate = self.get_candidate(offer.candidate_id)
            now = utc_now()
            offer.status = OfferStatus.viewed
            offer.viewed_at_utc = now
            offer.updated_at_utc = now
            self._add_activity(
                action="offer_viewed",
                target=candidate.name,
                target_to=offer.position_title,
                candidate_id=candidate.id,
            )
            self._persist_state()
            return offer

    def negotiate_offer(self, offer_id: str, request: OfferNegotiateRequest) -> OfferRecord:
        """Record one negotiation round and apply the terms it changes.

        Salary, benefits and start date are only touched when the round
        carries them; every round is kept in ``negotiation_history``.
        """
        with self._lock:
            offer = self._offer_for_action(offer_id)
            if offer.status not in RESPONDABLE_OFFER_STATUSES:
                raise StoreConflictError(
                    f"offer cannot be negotiated from status: {offer.status.value}"
                )
            if request.start_date and offer.expires_at and offer.expires_at > request.start_date:
                raise StoreConflictError("expires_at cannot be after start_date")
            candidate = self.get_candidate(offer.candidate_id)
            benefits = (
                [benefit.strip() for benefit in request.benefits if benefit.strip()]
                if request.benefits is not None
                else None
            )
            now = utc_now()
            offer.negotiation_history.append(
                NegotiationRound(
                    at_utc=now,
                    notes=request.notes.strip(),
                    salary_amount=request.salary_amount,
                    benefits=benefits,
                    start_date=request.start_date,
                )
            )
            if request.salary_amount is not None:
                offer.salary_amount = request.salary_amount
            if benefits is not None:
                offer.benefits = benefits
            if request.start_date is not None:
                offer.start_date = request.start_date
            offer.status = OfferStatus.negotiating
            offer.updated_at_utc = now
            self._add_notification(
                NotificationType.offer_negotiating,
                "Offer Under Negotiation",
                f"{candidate.name} is negotiating the offer for {offer.position_title}.",
            )
            self._add_activity(
                action="offer_negotiated",
                target=candidate.name,
                target_to=offer.position_title,
                candidate_id=candidate.id,
            )
            self._persist_state()
            logger.info(
                "offer_negotiated offer_id=%s round=%s",
                offer.id,
                len(offer.negotiation_history),
            )
            return offer

    def accept_offer(
        self, offer_id: str, response: Optional[str] = None
    ) -> tuple[OfferRecord, CandidateRecord, bool, Optional[str]]:
        with self._lock:
            offer = self._respond_to_offer(offer_id, OfferStatus.accepted, response)
            candidate = self.get_candidate(offer.candidate_id)
            suffix = f" Response: {response}" if response else ""
            self._add_notification(
                NotificationType.offer_accepted,
                "Offer Accepted",
                f"{candidate.name} has accepted the offer for {offer.position_title}.{suffix}",
            )
            stage_changed, detail = self._follow_offer_with_stage(
                candidate, CandidateStage.hired, reason="offer_accepted"
            )
            self._persist_state()
            return offer, candidate, stage_changed, detail

    def decline_offer(
        self, offer_id: str, response: Optional[str] = None
    ) -> tuple[OfferRecord, CandidateRecord, bool, Optional[str]]:
        with self._lock:
            offer = self._respond_to_offer(offer_id, OfferStatus.declined, response)
            candidate = self.get_candidate(offer.candidate_id)
            suffix = f" Response: {response}" if response else ""
            self._add_notification(
                NotificationType.offer_declined,
                "Offer Declined",
                f"{candidate.name} has declined the offer for {offer.position_title}.{suffix}",
            )
            stage_changed, detail = False, None
            if self.decline_rejects_candidate:
                stage_changed, detail = self._follow_offer_with_stage(
                    candidate, CandidateStage.rejected, reason="offer_declined"
                )
            self._persist_state()
            return offer, candidate, stage_changed, detail

    # Notifications & activity

    def list_notifications(self, *, unread_only: bool = False, limit: int = 50) -> list[NotificationRecord]:
        safe_limit = max(1, min(limit, 500))
        with self._lock:
            items = [item for item in self.notifications if item.unread or not unread_only]
        return list(reversed(items))[:safe_limit]

    def mark_notification_read(self, notification_id: str) -> NotificationRecord:
        with self._lock:
            for notification in self.notifications:
                if notification.id == notification_id:
                    notification.unread = False
                    self._persist_state()
                    return notification
        raise StoreNotFoundError(f"notification not found: {notification_id}")

    def mark_all_notifications_read(self) -> int:
        with self._lock:
            updated = 0
            for notification in self.notifications:
                if notification.unread:
                    notification.unread = False
                    updated += 1
            if updated:
                self._persist_state()
            return updated

    def list_activity(
        self, *, candidate_id: Optional[str] = None, limit: int = 50
    ) -> list[ActivityRecord]:
        safe_limit = max(1, min(limit, 500))
        with self._lock:
            items = [
                item
                for item in self.activity
                if candidate_id is None or item.candidate_id == candidate_id
            ]
        return list(reversed(items))[:safe_limit]

    # Internals

    def _check_expected_stage(
        self, candidate: CandidateRecord, expected_stage: Optional[CandidateStage]
    ) -> None:
        if expected_stage is not None and candidate.stage != expected_stage:
            raise StoreConflictError(
                f"candidate {candidate.id} is in stage {candidate.stage.value}, "
                f"expected {expected_stage.value}"
            )

    def _apply_move(
        self, candidate: CandidateRecord, to_stage: CandidateStage, *, reason: str
    ) -> StageMove:
        from_stage = candidate.stage
        decision = check_transition(from_stage, to_stage)
        if not decision.allowed:
            self._record_transition(applied=False)
            logger.info(
                "stage_move_rejected candidate_id=%s from=%s to=%s",
                candidate.id,
                from_stage.value,
                to_stage.value,
            )
            raise StageTransitionError(from_stage, to_stage, decision.reason or "")
        if (
            to_stage == CandidateStage.offer
            and self.offer_stage_requires_offer
            and not self._has_active_offer(candidate.id)
        ):
            self._record_transition(applied=False)
            raise StoreConflictError(
                "Cannot move candidate to 'Offer' stage. "
                "Create an offer for this candidate first."
            )

        candidate.stage = to_stage
        candidate.version += 1
        candidate.updated_at_utc = utc_now()
        self._add_activity(
            action="candidate_moved",
            target=candidate.name,
            target_to=f"{from_stage.value} → {to_stage.value}",
            candidate_id=candidate.id,
        )
        self._add_notification(
            NotificationType.candidate_moved,
            "Candidate Moved to New Stage",
            f"{candidate.name} has been moved to a new pipeline stage. "
            f"{from_stage.value} → {to_stage.value}",
        )
        self._persist_state()
        self._record_transition(applied=True)
        logger.info(
            "stage_move candidate_id=%s from=%s to=%s reason=%s",
            candidate.id,
            from_stage.value,
            to_stage.value,
            reason,
        )
        return StageMove(
            candidate_id=candidate.id,
            candidate_name=candidate.name,
            job_id=candidate.job_id,
            from_stage=from_stage,
            to_stage=to_stage,
            version=candidate.version,
            counts=self.pipeline_counts(candidate.job_id),
        )

    def _bulk_move_one(
        self,
        candidate_id: str,
        to_stage: CandidateStage,
        *,
        expected_stage: Optional[CandidateStage] = None,
        reason: str,
    ) -> BulkMoveItem:
        try:
            move = self.move_candidate(
                candidate_id,
                to_stage,
                expected_stage=expected_stage,
                reason=reason,
            )
        except StoreNotFoundError as exc:
            return BulkMoveItem(candidate_id=candidate_id, moved=False, stage=None, detail=str(exc))
        except StoreConflictError as exc:
            return BulkMoveItem(
                candidate_id=candidate_id,
                moved=False,
                stage=self._current_stage(candidate_id),
                detail=str(exc),
            )
        return BulkMoveItem(candidate_id=candidate_id, moved=True, stage=move.to_stage)

    def _current_stage(self, candidate_id: str) -> Optional[CandidateStage]:
        candidate = self.candidates.get(candidate_id)
        return candidate.stage if candidate else None

    def _find_offer(self, offer_id: str) -> OfferRecord:
        offer = self.offers.get(offer_id)
        if not offer:
            raise StoreNotFoundError(f"offer not found: {offer_id}")
        return offer

    def _offer_for_action(self, offer_id: str) -> OfferRecord:
        offer = self._find_offer(offer_id)
        if self._expire_if_due(offer):
            self._persist_state()
        if offer.status == OfferStatus.expired:
            expired_on = offer.expires_at.isoformat() if offer.expires_at else "unknown date"
            raise StoreConflictError(f"offer expired on {expired_on}")
        return offer

    def _expire_if_due(self, offer: OfferRecord) -> bool:
        # An offer stays open through the whole of its expires_at day.
        if offer.status not in OPEN_OFFER_STATUSES or offer.expires_at is None:
            return False
        now = utc_now()
        if offer.expires_at >= now.date():
            return False
        offer.status = OfferStatus.expired
        offer.updated_at_utc = now
        candidate = self.candidates.get(offer.candidate_id)
        name = candidate.name if candidate else offer.candidate_id
        self._add_notification(
            NotificationType.offer_expired,
            "Offer Expired",
            f"The offer to {name} for {offer.position_title} expired on "
            f"{offer.expires_at.isoformat()}.",
        )
        logger.info("offer_expired offer_id=%s expires_at=%s", offer.id, offer.expires_at)
        return True

    def _expire_due_offers(self) -> None:
        expired = [offer for offer in self.offers.values() if self._expire_if_due(offer)]
        if expired:
            self._persist_state()

    def _respond_to_offer(
        self, offer_id: str, status: OfferStatus, response: Optional[str]
    ) -> OfferRecord:
        offer = self._offer_for_action(offer_id)
        if offer.status not in RESPONDABLE_OFFER_STATUSES:
            action = "accepted" if status == OfferStatus.accepted else "declined"
            raise StoreConflictError(
                f"offer cannot be {action} from status: {offer.status.value}"
            )
        now = utc_now()
        offer.status = status
        offer.responded_at_utc = now
        offer.response = response
        offer.updated_at_utc = now
        return offer

    def _follow_offer_with_stage(
        self, candidate: CandidateRecord, to_stage: CandidateStage, *, reason: str
    ) -> tuple[bool, Optional[str]]:
        # The offer status is already committed; a refused move is reported, not raised.
        if candidate.stage == to_stage:
            return False, None
        try:
            self._apply_move(candidate, to_stage, reason=reason)
        except StoreConflictError as exc:
            logger.warning(
                "offer_stage_follow_up_skipped candidate_id=%s to=%s detail=%s",
                candidate.id,
                to_stage.value,
                exc,
            )
            return False, str(exc)
        return True, None

    def _has_active_offer(self, candidate_id: str) -> bool:
        self._expire_due_offers()
        return any(
            offer.candidate_id == candidate_id and offer.status in ACTIVE_OFFER_STATUSES
            for offer in self.offers.values()
        )

    def _record_transition(self, *, applied: bool) -> None:
        if self.metrics:
            self.metrics.record_transition(applied=applied)

    def _add_activity(
        self,
        *,
        action: str,
        target: str,
        target_to: Optional[str] = None,
        candidate_id: Optional[str] = None,
    ) -> None:
        self.activity.append(
            ActivityRecord(
                id=new_id("act"),
                action=action,
                target=target,
                target_to=target_to,
                candidate_id=candidate_id,
                created_at_utc=utc_now(),
            )
        )

    def _add_notification(self, type_: NotificationType, title: str, desc: str) -> None:
        self.notifications.append(
            NotificationRecord(
                id=new_id("ntf"),
                type=type_,
                category=NOTIFICATION_CATEGORIES[type_],
                title=title,
                desc=desc,
                created_at_utc=utc_now(),
            )
        )

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(self._snapshot_data())

    def _snapshot_data(self) -> dict:
        return {
            "jobs": [record.model_dump(mode="json") for record in self.jobs.values()],
            "candidates": [record.model_dump(mode="json") for record in self.candidates.values()],
            "offers": [record.model_dump(mode="json") for record in self.offers.values()],
            "notifications": [record.model_dump(mode="json") for record in self.notifications],
            "activity": [record.model_dump(mode="json") for record in self.activity],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.jobs = {
            record["id"]: JobRecord.model_validate(record) for record in snapshot.get("jobs", [])
        }
        self.candidates = {
            record["id"]: CandidateRecord.model_validate(record)
            for record in snapshot.get("candidates", [])
        }
        self.offers = {
            record["id"]: OfferRecord.model_validate(record)
            for record in snapshot.get("offers", [])
        }
        self.notifications = [
            NotificationRecord.model_validate(record)
            for record in snapshot.get("notifications", [])
        ]
        self.activity = [
            ActivityRecord.model_validate(record) for record in snapshot.get("activity", [])
        ]
