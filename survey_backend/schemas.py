"""
Pydantic schemas for the survey settlement API.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from survey_backend.settlement import MAX_AMOUNT, MAX_COMPLETED_RESPONSES
from survey_backend.statuses import SurveyStatus


class CreateSurveyRequest(BaseModel):
    creator_id: str = Field(..., max_length=64)
    title: str = Field(..., max_length=200)
    total_budget: Decimal = Field(..., ge=0, le=MAX_AMOUNT, decimal_places=2)
    reward_per_response: Decimal = Field(..., gt=0, le=MAX_AMOUNT, decimal_places=2)


class SurveyResponse(BaseModel):
    survey_id: str
    creator_id: str
    title: str
    total_budget: float
    reward_per_response: float
    completed_responses: int
    status: str


class ListSurveysResponse(BaseModel):
    surveys: list[SurveyResponse]


class UpdateSurveyStatusRequest(BaseModel):
    status: SurveyStatus


class SettlementPreviewRequest(BaseModel):
    # Only the storage range is checked here; the calculator reports the rest.
    total_budget: Decimal = Field(..., le=MAX_AMOUNT)
    reward_per_response: Decimal = Field(..., le=MAX_AMOUNT)
    completed_responses: Decimal = Field(..., le=MAX_COMPLETED_RESPONSES)


class SettlementResponse(BaseModel):
    max_participants: int
    remaining_slots: int
    refund_rewards: float
    refund_fee: float
    refund_amount: float


class SurveySettlementResponse(BaseModel):
    survey: SurveyResponse
    settlement: SettlementResponse


class CancellationRequestPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1024)


class CancellationRequestResponse(BaseModel):
    request_id: str
    survey_id: str
    reason: Optional[str] = None
    status: str
    refund_amount: Optional[float] = None
    admin_note: Optional[str] = None
    created_at: float
    processed_at: Optional[float] = None


class ListCancellationRequestsResponse(BaseModel):
    requests: list[CancellationRequestResponse]


class CancellationStatsResponse(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    total_refunded: float


class ProcessCancellationRequest(BaseModel):
    action: Literal["approve", "reject"]
    admin_note: Optional[str] = Field(default=None, max_length=1024)


class ProcessCancellationResponse(BaseModel):
    request: CancellationRequestResponse
    settlement: Optional[SettlementResponse] = None
    payout_id: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str


class PayoutStatsResponse(BaseModel):
    queued: int
    paid: int
    paid_amount: float


class DashboardStatsResponse(BaseModel):
    surveys: dict[str, int]
    cancellation_requests: CancellationStatsResponse
    payouts: PayoutStatsResponse
