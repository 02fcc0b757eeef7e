"""
HTTP routes for the survey settlement API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from survey_backend.db import CancellationRequestRecord, DbClient, SurveyRecord
from survey_backend.dependencies import get_db_client, get_queue_client, require_admin
from survey_backend.queue import PayoutId, PayoutQueue
from survey_backend.schemas import (
    CancellationRequestPayload,
    CancellationRequestResponse,
    CancellationStatsResponse,
    CreateSurveyRequest,
    DashboardStatsResponse,
    HealthResponse,
    ListCancellationRequestsResponse,
    ListSurveysResponse,
    PayoutStatsResponse,
    ProcessCancellationRequest,
    ProcessCancellationResponse,
    SettlementPreviewRequest,
    SettlementResponse,
    SurveyResponse,
    SurveySettlementResponse,
    UpdateSurveyStatusRequest,
)
from survey_backend.settlement import SettlementResult, calculate_settlement
from survey_backend.statuses import (
    CLOSED_SURVEY_STATUSES,
    OPEN_SURVEY_STATUSES,
    CancellationStatus,
    SurveyStatus,
)

logger = logging.getLogger(__name__)

health_router = APIRouter()
router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])


def _survey_response(survey: SurveyRecord) -> SurveyResponse:
    return SurveyResponse(
        survey_id=survey.survey_id,
        creator_id=survey.creator_id,
        title=survey.title,
        total_budget=float(survey.total_budget),
        reward_per_response=float(survey.reward_per_response),
        completed_responses=survey.completed_responses,
        status=survey.status.value,
    )


def _settlement_response(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        max_participants=result.max_participants,
        remaining_slots=result.remaining_slots,
        refund_rewards=float(result.refund_rewards),
        refund_fee=float(result.refund_fee),
        refund_amount=float(result.refund_amount),
    )


def _request_response(request: CancellationRequestRecord) -> CancellationRequestResponse:
    return CancellationRequestResponse(
        request_id=request.request_id,
        survey_id=request.survey_id,
        reason=request.reason,
        status=request.status.value,
        refund_amount=(
            float(request.refund_amount) if request.refund_amount is not None else None
        ),
        admin_note=request.admin_note,
        created_at=request.created_at,
        processed_at=request.processed_at,
    )


def _cancellation_stats_response(stats: dict) -> CancellationStatsResponse:
    return CancellationStatsResponse(
        total=stats["total"],
        pending=stats["pending"],
        approved=stats["approved"],
        rejected=stats["rejected"],
        total_refunded=float(stats["total_refunded"]),
    )


def _settle_survey(survey: SurveyRecord) -> SettlementResult:
    return calculate_settlement(
        survey.total_budget, survey.reward_per_response, survey.completed_responses
    )


def _get_survey_or_404(db: DbClient, survey_id: str) -> SurveyRecord:
    survey = db.get_survey(survey_id)
    if not survey:
        raise HTTPException(status_code=404, detail="Survey not found")
    return survey


@health_router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok", timestamp=datetime.now(timezone.utc).isoformat()
    )


@router.post("/surveys", response_model=SurveyResponse, status_code=201)
def create_survey(payload: CreateSurveyRequest, db: DbClient = Depends(get_db_client)):
    survey = db.create_survey(
        payload.creator_id,
        payload.title,
        payload.total_budget,
        payload.reward_per_response,
    )
    return _survey_response(survey)


@router.get("/surveys/{survey_id}", response_model=SurveyResponse)
def get_survey(survey_id: str, db: DbClient = Depends(get_db_client)):
    return _survey_response(_get_survey_or_404(db, survey_id))


@router.post("/surveys/{survey_id}/responses", response_model=SurveyResponse)
def record_response(survey_id: str, db: DbClient = Depends(get_db_client)):
    """
    Count one completed (rewarded) response. Closes the survey once the budget
    capacity is used up.
    """
    survey = _get_survey_or_404(db, survey_id)
    if survey.status not in OPEN_SURVEY_STATUSES:
        raise HTTPException(
            status_code=409, detail=f"Survey is {survey.status.value}"
        )
    survey = db.record_completed_response(survey_id)
    if _settle_survey(survey).remaining_slots <= 0:
        logger.info("Survey %s reached capacity, marking completed", survey_id)
        survey = db.update_survey_status(survey_id, SurveyStatus.COMPLETED)
    return _survey_response(survey)


@router.post(
    "/surveys/{survey_id}/cancellation-requests",
    response_model=CancellationRequestResponse,
    status_code=201,
)
def request_cancellation(
    survey_id: str,
    payload: CancellationRequestPayload,
    db: DbClient = Depends(get_db_client),
):
    survey = _get_survey_or_404(db, survey_id)
    if survey.status in CLOSED_SURVEY_STATUSES:
        raise HTTPException(
            status_code=409, detail=f"Survey is already {survey.status.value}"
        )
    request = db.create_cancellation_request(survey_id, payload.reason)
    if not request:
        raise HTTPException(
            status_code=409, detail="A cancellation request is already pending"
        )
    logger.info("Cancellation requested for survey %s (%s)", survey_id, request.request_id)
    return _request_response(request)


@admin_router.get("/surveys", response_model=ListSurveysResponse)
def list_surveys(
    status: Optional[SurveyStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: DbClient = Depends(get_db_client),
):
    surveys = db.list_surveys(status=status, limit=limit)
    return ListSurveysResponse(surveys=[_survey_response(s) for s in surveys])


@admin_router.patch("/surveys/{survey_id}/status", response_model=SurveyResponse)
def update_survey_status(
    survey_id: str,
    payload: UpdateSurveyStatusRequest,
    db: DbClient = Depends(get_db_client),
):
    survey = db.update_survey_status(survey_id, payload.status)
    if not survey:
        raise HTTPException(status_code=404, detail="Survey not found")
    logger.info("Survey %s set to %s", survey_id, payload.status.value)
    return _survey_response(survey)


@admin_router.post("/settlements/preview", response_model=SettlementResponse)
def preview_settlement(payload: SettlementPreviewRequest):
    result = calculate_settlement(
        payload.total_budget, payload.reward_per_response, payload.completed_responses
    )
    return _settlement_response(result)


@admin_router.get(
    "/surveys/{survey_id}/settlement", response_model=SurveySettlementResponse
)
def survey_settlement(survey_id: str, db: DbClient = Depends(get_db_client)):
    survey = _get_survey_or_404(db, survey_id)
    return SurveySettlementResponse(
        survey=_survey_response(survey),
        settlement=_settlement_response(_settle_survey(survey)),
    )


@admin_router.get(
    "/cancellation-requests", response_model=ListCancellationRequestsResponse
)
def list_cancellation_requests(
    status: Optional[CancellationStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: DbClient = Depends(get_db_client),
):
    requests = db.list_cancellation_requests(status=status, limit=limit)
    return ListCancellationRequestsResponse(
        requests=[_request_response(r) for r in requests]
    )


@admin_router.get(
    "/cancellation-requests/stats", response_model=CancellationStatsResponse
)
def cancellation_request_stats(db: DbClient = Depends(get_db_client)):
    return _cancellation_stats_response(db.cancellation_request_stats())


@admin_router.get(
    "/cancellation-requests/recent", response_model=ListCancellationRequestsResponse
)
def recent_cancellation_requests(
    limit: int = Query(5, ge=1, le=50),
    db: DbClient = Depends(get_db_client),
):
    requests = db.list_cancellation_requests(limit=limit)
    return ListCancellationRequestsResponse(
        requests=[_request_response(r) for r in requests]
    )


@admin_router.patch(
    "/cancellation-requests/{request_id}/process",
    response_model=ProcessCancellationResponse,
)
def process_cancellation_request(
    request_id: str,
    payload: ProcessCancellationRequest,
    db: DbClient = Depends(get_db_client),
    queue: PayoutQueue = Depends(get_queue_client),
):
    """
    Approve or reject a pending cancellation. Approval settles the survey,
    cancels it and queues the refund payout for the creator.
    """
    request = db.get_cancellation_request(request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Cancellation request not found")
    if request.status != CancellationStatus.PENDING:
        raise HTTPException(
            status_code=409, detail=f"Request already {request.status.value}"
        )

    if payload.action == "reject":
        processed = db.process_cancellation_request(
            request_id, approve=False, admin_note=payload.admin_note
        )
        if not processed:
            raise HTTPException(status_code=409, detail="Request already processed")
        logger.info("Cancellation request %s rejected", request_id)
        return ProcessCancellationResponse(request=_request_response(processed.request))

    survey = _get_survey_or_404(db, request.survey_id)
    result = _settle_survey(survey)
    processed = db.process_cancellation_request(
        request_id,
        approve=True,
        refund_amount=result.refund_amount,
        admin_note=payload.admin_note,
    )
    if not processed:
        raise HTTPException(status_code=409, detail="Request already processed")
    payout_id = None
    if processed.payout:
        # The payout row is committed; if this enqueue is lost the worker's
        # db fallback still finds it.
        payout_id = processed.payout.payout_id
        queue.enqueue(PayoutId(payout_id))
    logger.info(
        "Cancellation request %s approved: survey %s refund %s (payout %s)",
        request_id,
        survey.survey_id,
        processed.request.refund_amount,
        payout_id,
    )
    return ProcessCancellationResponse(
        request=_request_response(processed.request),
        settlement=_settlement_response(result),
        payout_id=payout_id,
    )


@admin_router.get("/dashboard/stats", response_model=DashboardStatsResponse)
def dashboard_stats(db: DbClient = Depends(get_db_client)):
    payouts = db.payout_stats()
    return DashboardStatsResponse(
        surveys=db.survey_status_counts(),
        cancellation_requests=_cancellation_stats_response(
            db.cancellation_request_stats()
        ),
        payouts=PayoutStatsResponse(
            queued=payouts["queued"],
            paid=payouts["paid"],
            paid_amount=float(payouts["paid_amount"]),
        ),
    )
