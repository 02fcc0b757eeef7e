"""
Status enums shared by the db layer, routes and worker.
"""

from __future__ import annotations

from enum import Enum


class SurveyStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class CancellationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PayoutStatus(str, Enum):
    QUEUED = "QUEUED"
    PAID = "PAID"


# Surveys that can still collect responses.
OPEN_SURVEY_STATUSES = (SurveyStatus.APPROVED, SurveyStatus.ACTIVE)
# Surveys that are finished and cannot be cancelled again.
CLOSED_SURVEY_STATUSES = (
    SurveyStatus.CANCELLED,
    SurveyStatus.COMPLETED,
    SurveyStatus.REJECTED,
)
