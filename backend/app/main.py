from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.app.auth import READ_ROLES, WRITE_ROLES, AuthContext, require_roles
from backend.app.models import (
    ActivityItem,
    BoardCard,
    BoardColumn,
    BoardResponse,
    BulkAdvanceRequest,
    BulkMoveItem,
    BulkMoveResponse,
    BulkRejectRequest,
    CandidateCreateRequest,
    CandidateCreateResponse,
    CandidateItem,
    CandidateRecord,
    CandidateStage,
    CvParseRequest,
    CvUploadRequest,
    CvUploadResponse,
    JobCreateRequest,
    JobRecord,
    JobResponse,
    JobStatus,
    NotificationItem,
    NotificationRecord,
    OfferActionResponse,
    OfferCreateRequest,
    OfferItem,
    OfferNegotiateRequest,
    OfferRecord,
    OfferRespondRequest,
    OfferStatus,
    ParsedCv,
    PipelineSummaryResponse,
    SkillTags,
    StageAdvanceRequest,
    StageDescriptor,
    StageMoveRequest,
    StageMoveResponse,
    TransitionCheckRequest,
    TransitionCheckResponse,
)
from backend.app.observability import MetricsRegistry, configure_logging, observe_request
from backend.app.persistence import SnapshotPersistence
from backend.app.services.cv_parser import parse_cv_text
from backend.app.services.scoring import skill_tags
from backend.app.services.workflow import (
    check_transition,
    is_terminal,
    legal_targets,
    next_stage,
)
from backend.app.settings import Settings, load_settings
from backend.app.store import (
    InMemoryStore,
    StageMove,
    StoreConflictError,
    StoreNotFoundError,
)

TOP_SKILLS_ON_CARD = 3


def create_app() -> FastAPI:
    app = FastAPI(title="CoreFlow Pipeline API", version="0.1.0")
    settings = load_settings()
    configure_logging(settings.log_level)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    persistence = (
        SnapshotPersistence(settings.database_url) if settings.persistence_enabled else None
    )
    metrics = MetricsRegistry()
    app.state.store = InMemoryStore(
        persistence=persistence,
        metrics=metrics,
        offer_stage_requires_offer=settings.offer_stage_requires_offer,
        decline_rejects_candidate=settings.decline_rejects_candidate,
    )
    app.state.settings = settings
    app.state.metrics = metrics

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def _page_size(request: Request, limit: Optional[int]) -> int:
    if limit is None:
        return get_settings(request).default_page_size
    return max(1, min(limit, 500))


def _not_found(exc: StoreNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: StoreConflictError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def job_response(job: JobRecord, applicants_count: int) -> JobResponse:
    return JobResponse(
        job_id=job.id,
        title=job.title,
        department=job.department,
        location=job.location,
        job_type=job.job_type,
        status=job.status,
        required_skills=job.required_skills,
        applicants_count=applicants_count,
        created_at_utc=job.created_at_utc,
    )


def candidate_item(candidate: CandidateRecord) -> CandidateItem:
    return CandidateItem(
        candidate_id=candidate.id,
        job_id=candidate.job_id,
        name=candidate.name,
        email=candidate.email,
        role=candidate.role,
        location=candidate.location,
        stage=candidate.stage,
        skills=candidate.skills,
        experience_years=candidate.experience_years,
        source=candidate.source,
        ai_match_score=candidate.ai_match_score,
        portfolio_urls=candidate.portfolio_urls,
        version=candidate.version,
        applied_at_utc=candidate.applied_at_utc,
        updated_at_utc=candidate.updated_at_utc,
    )


def board_card(candidate: CandidateRecord, job_skills: list[str]) -> BoardCard:
    matched, missing = skill_tags(candidate.skills, job_skills)
    return BoardCard(
        candidate_id=candidate.id,
        name=candidate.name,
        role=candidate.role,
        location=candidate.location,
        ai_match_score=candidate.ai_match_score,
        top_skills=candidate.skills[:TOP_SKILLS_ON_CARD],
        extra_skill_count=max(0, len(candidate.skills) - TOP_SKILLS_ON_CARD),
        skill_tags=SkillTags(matched=matched, missing=missing),
        next_stage=next_stage(candidate.stage),
        applied_at_utc=candidate.applied_at_utc,
    )


def offer_item(offer: OfferRecord) -> OfferItem:
    return OfferItem(
        offer_id=offer.id,
        candidate_id=offer.candidate_id,
        job_id=offer.job_id,
        position_title=offer.position_title,
        salary_amount=offer.salary_amount,
        salary_currency=offer.salary_currency,
        salary_period=offer.salary_period,
        start_date=offer.start_date,
        expires_at=offer.expires_at,
        benefits=list(offer.benefits),
        status=offer.status,
        sent_at_utc=offer.sent_at_utc,
        viewed_at_utc=offer.viewed_at_utc,
        responded_at_utc=offer.responded_at_utc,
        response=offer.response,
        created_at_utc=offer.created_at_utc,
        negotiation_history=[item.model_copy() for item in offer.negotiation_history],
    )


def notification_item(notification: NotificationRecord) -> NotificationItem:
    return NotificationItem(
        notification_id=notification.id,
        type=notification.type,
        category=notification.category,
        title=notification.title,
        desc=notification.desc,
        unread=notification.unread,
        created_at_utc=notification.created_at_utc,
    )


def bulk_response(results: list[BulkMoveItem]) -> BulkMoveResponse:
    moved = sum(1 for item in results if item.moved)
    return BulkMoveResponse(moved=moved, skipped=len(results) - moved, results=results)


def stage_move_response(move: StageMove) -> StageMoveResponse:
    return StageMoveResponse(
        candidate_id=move.candidate_id,
        from_stage=move.from_stage,
        stage=move.to_stage,
        message=f"{move.candidate_name} moved to {move.to_stage.value}",
        counts=move.counts,
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    # Stage rules

    @router.get("/stages", response_model=list[StageDescriptor])
    def list_stages(
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[StageDescriptor]:
        return [
            StageDescriptor(
                stage=stage,
                next_stage=next_stage(stage),
                terminal=is_terminal(stage),
                legal_targets=[target for target in CandidateStage if target in legal_targets(stage)],
            )
            for stage in CandidateStage
        ]

    @router.post("/stages/check", response_model=TransitionCheckResponse)
    def check_stage_transition(
        payload: TransitionCheckRequest,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> TransitionCheckResponse:
        decision = check_transition(payload.current, payload.target)
        return TransitionCheckResponse(allowed=decision.allowed, reason=decision.reason)

    # Jobs

    @router.post("/jobs", response_model=JobResponse)
    def create_job(
        payload: JobCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> JobResponse:
        job = get_store(request).create_job(payload)
        return job_response(job, 0)

    @router.get("/jobs", response_model=list[JobResponse])
    def list_jobs(
        request: Request,
        status_filter: Optional[JobStatus] = Query(default=None, alias="status"),
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[JobResponse]:
        store = get_store(request)
        return [
            job_response(job, store.applicants_count(job.id))
            for job in store.list_jobs(status=status_filter)
        ]

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    def get_job(
        job_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> JobResponse:
        store = get_store(request)
        try:
            job = store.get_job(job_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        return job_response(job, store.applicants_count(job.id))

    @router.get("/jobs/{job_id}/pipeline", response_model=BoardResponse)
    def job_pipeline(
        job_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> BoardResponse:
        try:
            job, by_stage, counts = get_store(request).job_board(job_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        columns = [
            BoardColumn(
                stage=stage,
                count=counts[stage],
                next_stage=next_stage(stage),
                cards=[board_card(candidate, job.required_skills) for candidate in candidates],
            )
            for stage, candidates in by_stage.items()
        ]
        return BoardResponse(job_id=job.id, job_title=job.title, counts=counts, columns=columns)

    @router.get("/pipeline/summary", response_model=PipelineSummaryResponse)
    def pipeline_summary(
        request: Request,
        job_id: Optional[str] = None,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> PipelineSummaryResponse:
        store = get_store(request)
        if job_id:
            try:
                store.get_job(job_id)
            except StoreNotFoundError as exc:
                raise _not_found(exc) from exc
        return PipelineSummaryResponse.model_validate(store.pipeline_summary(job_id))

    # Candidates

    @router.post("/candidates", response_model=CandidateCreateResponse)
    def create_candidate(
        payload: CandidateCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> CandidateCreateResponse:
        try:
            candidate, deduplicated = get_store(request).create_candidate(payload)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        return CandidateCreateResponse(
            candidate_id=candidate.id,
            job_id=candidate.job_id,
            stage=candidate.stage,
            deduplicated=deduplicated,
            ai_match_score=candidate.ai_match_score,
        )

    @router.get("/candidates", response_model=list[CandidateItem])
    def list_candidates(
        request: Request,
        job_id: Optional[str] = None,
        stage: Optional[CandidateStage] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[CandidateItem]:
        candidates = get_store(request).list_candidates(
            job_id=job_id,
            stage=stage,
            search=search,
            limit=_page_size(request, limit),
        )
        return [candidate_item(candidate) for candidate in candidates]

    # Registered before the /candidates/{candidate_id}/... routes so "bulk" is not read as an id.
    @router.post("/candidates/bulk/advance", response_model=BulkMoveResponse)
    def bulk_advance(
        payload: BulkAdvanceRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> BulkMoveResponse:
        results = get_store(request).bulk_advance(payload.candidate_ids, payload.source_stage)
        return bulk_response(results)

    @router.post("/candidates/bulk/reject", response_model=BulkMoveResponse)
    def bulk_reject(
        payload: BulkRejectRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> BulkMoveResponse:
        return bulk_response(get_store(request).bulk_reject(payload.candidate_ids))

    @router.get("/candidates/{candidate_id}", response_model=CandidateItem)
    def get_candidate(
        candidate_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> CandidateItem:
        try:
            candidate = get_store(request).get_candidate(candidate_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        return candidate_item(candidate)

    @router.post("/candidates/{candidate_id}/stage", response_model=StageMoveResponse)
    def move_candidate(
        candidate_id: str,
        payload: StageMoveRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> StageMoveResponse:
        try:
            move = get_store(request).move_candidate(
                candidate_id,
                payload.to_stage,
                expected_stage=payload.expected_stage,
                reason=payload.reason,
            )
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return stage_move_response(move)

    @router.post("/candidates/{candidate_id}/advance", response_model=StageMoveResponse)
    def advance_candidate(
        candidate_id: str,
        request: Request,
        payload: Optional[StageAdvanceRequest] = None,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> StageMoveResponse:
        expected_stage = payload.expected_stage if payload else None
        try:
            move = get_store(request).advance_candidate(
                candidate_id, expected_stage=expected_stage
            )
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return stage_move_response(move)

    @router.post("/candidates/{candidate_id}/cv", response_model=CvUploadResponse)
    def upload_cv(
        candidate_id: str,
        payload: CvUploadRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> CvUploadResponse:
        store = get_store(request)
        try:
            job = store.get_job(store.get_candidate(candidate_id).job_id)
            parsed = parse_cv_text(payload.text, job.required_skills)
            candidate, moved = store.attach_cv(candidate_id, parsed, file_name=payload.file_name)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return CvUploadResponse(
            candidate_id=candidate.id,
            stage=candidate.stage,
            moved_to_screening=moved,
            ai_match_score=candidate.ai_match_score,
            parsed=parsed,
        )

    @router.post("/cv/parse", response_model=ParsedCv)
    def parse_cv(
        payload: CvParseRequest,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> ParsedCv:
        return parse_cv_text(payload.text, payload.job_skills)

    # Offers

    @router.post("/offers", response_model=OfferItem)
    def create_offer(
        payload: OfferCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferItem:
        try:
            offer = get_store(request).create_offer(payload)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return offer_item(offer)

    @router.get("/offers", response_model=list[OfferItem])
    def list_offers(
        request: Request,
        candidate_id: Optional[str] = None,
        status_filter: Optional[OfferStatus] = Query(default=None, alias="status"),
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[OfferItem]:
        offers = get_store(request).list_offers(candidate_id=candidate_id, status=status_filter)
        return [offer_item(offer) for offer in offers]

    @router.get("/offers/{offer_id}", response_model=OfferItem)
    def get_offer(
        offer_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> OfferItem:
        try:
            offer = get_store(request).get_offer(offer_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        return offer_item(offer)

    @router.post("/offers/{offer_id}/send", response_model=OfferActionResponse)
    def send_offer(
        offer_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferActionResponse:
        try:
            offer, candidate, changed, detail = get_store(request).send_offer(offer_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return OfferActionResponse(
            offer=offer_item(offer),
            candidate_stage=candidate.stage,
            stage_changed=changed,
            detail=detail,
        )

    @router.post("/offers/{offer_id}/view", response_model=OfferItem)
    def view_offer(
        offer_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferItem:
        try:
            offer = get_store(request).view_offer(offer_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return offer_item(offer)

    @router.post("/offers/{offer_id}/negotiate", response_model=OfferItem)
    def negotiate_offer(
        offer_id: str,
        payload: OfferNegotiateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferItem:
        try:
            offer = get_store(request).negotiate_offer(offer_id, payload)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return offer_item(offer)

    @router.post("/offers/{offer_id}/accept", response_model=OfferActionResponse)
    def accept_offer(
        offer_id: str,
        request: Request,
        payload: Optional[OfferRespondRequest] = None,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferActionResponse:
        response_text = payload.response if payload else None
        try:
            offer, candidate, changed, detail = get_store(request).accept_offer(
                offer_id, response_text
            )
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return OfferActionResponse(
            offer=offer_item(offer),
            candidate_stage=candidate.stage,
            stage_changed=changed,
            detail=detail,
        )

    @router.post("/offers/{offer_id}/decline", response_model=OfferActionResponse)
    def decline_offer(
        offer_id: str,
        request: Request,
        payload: Optional[OfferRespondRequest] = None,
        _: AuthContext = Depends(require_roles(*WRITE_ROLES)),
    ) -> OfferActionResponse:
        response_text = payload.response if payload else None
        try:
            offer, candidate, changed, detail = get_store(request).decline_offer(
                offer_id, response_text
            )
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        except StoreConflictError as exc:
            raise _conflict(exc) from exc
        return OfferActionResponse(
            offer=offer_item(offer),
            candidate_stage=candidate.stage,
            stage_changed=changed,
            detail=detail,
        )

    # Feeds

    @router.get("/notifications", response_model=list[NotificationItem])
    def list_notifications(
        request: Request,
        unread_only: bool = False,
        limit: Optional[int] = None,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[NotificationItem]:
        notifications = get_store(request).list_notifications(
            unread_only=unread_only,
            limit=_page_size(request, limit),
        )
        return [notification_item(notification) for notification in notifications]

    @router.post("/notifications/read-all")
    def mark_all_notifications_read(
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> dict[str, int]:
        return {"updated": get_store(request).mark_all_notifications_read()}

    @router.post("/notifications/{notification_id}/read", response_model=NotificationItem)
    def mark_notification_read(
        notification_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> NotificationItem:
        try:
            notification = get_store(request).mark_notification_read(notification_id)
        except StoreNotFoundError as exc:
            raise _not_found(exc) from exc
        return notification_item(notification)

    @router.get("/activity", response_model=list[ActivityItem])
    def list_activity(
        request: Request,
        candidate_id: Optional[str] = None,
        limit: Optional[int] = None,
        _: AuthContext = Depends(require_roles(*READ_ROLES)),
    ) -> list[ActivityItem]:
        items = get_store(request).list_activity(
            candidate_id=candidate_id,
            limit=_page_size(request, limit),
        )
        return [
            ActivityItem(
                activity_id=item.id,
                action=item.action,
                target=item.target,
                target_to=item.target_to,
                candidate_id=item.candidate_id,
                created_at_utc=item.created_at_utc,
            )
            for item in items
        ]

    return router


app = create_app()
