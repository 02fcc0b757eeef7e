"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from survey_backend.settlement import to_cents
from survey_backend.statuses import CancellationStatus, PayoutStatus, SurveyStatus

# Refund amounts are stored in NUMERIC(14, 2) columns; both clients round to
# whole cents with settlement.to_cents before saving so they agree.


class DbClient(Protocol):
    """Interface for database access."""

    def create_survey(
        self,
        creator_id: str,
        title: str,
        total_budget: Decimal,
        reward_per_response: Decimal,
    ) -> "SurveyRecord":
        ...

    def get_survey(self, survey_id: str) -> Optional["SurveyRecord"]:
        ...

    def list_surveys(
        self, status: Optional[SurveyStatus] = None, limit: int = 100
    ) -> list["SurveyRecord"]:
        ...

    def update_survey_status(
        self, survey_id: str, status: SurveyStatus
    ) -> Optional["SurveyRecord"]:
        ...

    def record_completed_response(self, survey_id: str) -> Optional["SurveyRecord"]:
        ...

    def survey_status_counts(self) -> dict:
        ...

    def create_cancellation_request(
        self, survey_id: str, reason: Optional[str] = None
    ) -> Optional["CancellationRequestRecord"]:
        """Returns None when the survey already has a pending request."""
        ...

    def get_cancellation_request(
        self, request_id: str
    ) -> Optional["CancellationRequestRecord"]:
        ...

    def find_pending_cancellation_request(
        self, survey_id: str
    ) -> Optional["CancellationRequestRecord"]:
        ...

    def list_cancellation_requests(
        self, status: Optional[CancellationStatus] = None, limit: int = 100
    ) -> list["CancellationRequestRecord"]:
        ...

    def process_cancellation_request(
        self,
        request_id: str,
        *,
        approve: bool,
        refund_amount: Optional[Decimal] = None,
        admin_note: Optional[str] = None,
    ) -> Optional["ProcessedCancellation"]:
        """
        Claim a PENDING request and decide it. Approval cancels the survey and,
        for a positive refund, records the payout in the same transaction.
        Returns None when the request is missing or no longer PENDING.
        """
        ...

    def cancellation_request_stats(self) -> dict:
        ...

    def payout_stats(self) -> dict:
        ...

    def create_refund_payout(
        self, request_id: str, survey_id: str, creator_id: str, amount: Decimal
    ) -> "RefundPayoutRecord":
        ...

    def get_refund_payout(self, payout_id: str) -> Optional["RefundPayoutRecord"]:
        ...

    def fetch_next_queued_payout(self) -> Optional["RefundPayoutRecord"]:
        ...

    def mark_payout_paid(self, payout_id: str) -> Optional["RefundPayoutRecord"]:
        ...


@dataclass
class SurveyRecord:
    survey_id: str
    creator_id: str
    title: str
    total_budget: Decimal
    reward_per_response: Decimal
    completed_responses: int = 0
    status: SurveyStatus = SurveyStatus.PENDING
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "survey_id": self.survey_id,
            "creator_id": self.creator_id,
            "title": self.title,
            "total_budget": self.total_budget,
            "reward_per_response": self.reward_per_response,
            "completed_responses": self.completed_responses,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CancellationRequestRecord:
    request_id: str
    survey_id: str
    reason: Optional[str] = None
    status: CancellationStatus = CancellationStatus.PENDING
    refund_amount: Optional[Decimal] = None
    admin_note: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    processed_at: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "survey_id": self.survey_id,
            "reason": self.reason,
            "status": self.status.value,
            "refund_amount": self.refund_amount,
            "admin_note": self.admin_note,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
        }


@dataclass
class RefundPayoutRecord:
    payout_id: str
    request_id: str
    survey_id: str
    creator_id: str
    amount: Decimal
    status: PayoutStatus = PayoutStatus.QUEUED
    created_at: float = field(default_factory=lambda: time.time())
    paid_at: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "payout_id": self.payout_id,
            "request_id": self.request_id,
            "survey_id": self.survey_id,
            "creator_id": self.creator_id,
            "amount": self.amount,
            "status": self.status.value,
            "created_at": self.created_at,
            "paid_at": self.paid_at,
        }


@dataclass
class ProcessedCancellation:
    request: CancellationRequestRecord
    payout: Optional[RefundPayoutRecord] = None


def _empty_stats() -> dict:
    stats = {status.value.lower(): 0 for status in CancellationStatus}
    stats["total"] = 0
    stats["total_refunded"] = Decimal(0)
    return stats


def _empty_payout_stats() -> dict:
    stats = {status.value.lower(): 0 for status in PayoutStatus}
    stats["paid_amount"] = Decimal(0)
    return stats


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.surveys: Dict[str, SurveyRecord] = {}
        self.cancellation_requests: Dict[str, CancellationRequestRecord] = {}
        self.payouts: Dict[str, RefundPayoutRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.surveys.clear()
        self.cancellation_requests.clear()
        self.payouts.clear()

    def create_survey(
        self,
        creator_id: str,
        title: str,
        total_budget: Decimal,
        reward_per_response: Decimal,
    ) -> SurveyRecord:
        record = SurveyRecord(
            survey_id=uuid.uuid4().hex,
            creator_id=creator_id,
            title=title,
            total_budget=Decimal(total_budget),
            reward_per_response=Decimal(reward_per_response),
        )
        self.surveys[record.survey_id] = record
        return record

    def get_survey(self, survey_id: str) -> Optional[SurveyRecord]:
        return self.surveys.get(survey_id)

    def list_surveys(
        self, status: Optional[SurveyStatus] = None, limit: int = 100
    ) -> list[SurveyRecord]:
        items = sorted(self.surveys.values(), key=lambda s: s.created_at, reverse=True)
        if status:
            items = [s for s in items if s.status == status]
        return items[:limit]

    def update_survey_status(
        self, survey_id: str, status: SurveyStatus
    ) -> Optional[SurveyRecord]:
        survey = self.surveys.get(survey_id)
        if not survey:
            return None
        survey.status = status
        survey.updated_at = time.time()
        return survey

    def record_completed_response(self, survey_id: str) -> Optional[SurveyRecord]:
        survey = self.surveys.get(survey_id)
        if not survey:
            return None
        survey.completed_responses += 1
        survey.updated_at = time.time()
        return survey

    def survey_status_counts(self) -> dict:
        counts = {status.value.lower(): 0 for status in SurveyStatus}
        for survey in self.surveys.values():
            counts[survey.status.value.lower()] += 1
        return counts

    def create_cancellation_request(
        self, survey_id: str, reason: Optional[str] = None
    ) -> Optional[CancellationRequestRecord]:
        if self.find_pending_cancellation_request(survey_id):
            return None
        record = CancellationRequestRecord(
            request_id=uuid.uuid4().hex, survey_id=survey_id, reason=reason
        )
        self.cancellation_requests[record.request_id] = record
        return record

    def get_cancellation_request(
        self, request_id: str
    ) -> Optional[CancellationRequestRecord]:
        return self.cancellation_requests.get(request_id)

    def find_pending_cancellation_request(
        self, survey_id: str
    ) -> Optional[CancellationRequestRecord]:
        for request in self.cancellation_requests.values():
            if (
                request.survey_id == survey_id
                and request.status == CancellationStatus.PENDING
            ):
                return request
        return None

    def list_cancellation_requests(
        self, status: Optional[CancellationStatus] = None, limit: int = 100
    ) -> list[CancellationRequestRecord]:
        items = sorted(
            self.cancellation_requests.values(),
            key=lambda r: r.created_at,
            reverse=True,
        )
        if status:
            items = [r for r in items if r.status == status]
        return items[:limit]

    def process_cancellation_request(
        self,
        request_id: str,
        *,
        approve: bool,
        refund_amount: Optional[Decimal] = None,
        admin_note: Optional[str] = None,
    ) -> Optional[ProcessedCancellation]:
        request = self.cancellation_requests.get(request_id)
        if not request or request.status != CancellationStatus.PENDING:
            return None
        now = time.time()
        request.status = (
            CancellationStatus.APPROVED if approve else CancellationStatus.REJECTED
        )
        request.refund_amount = (
            to_cents(refund_amount) if approve and refund_amount is not None else None
        )
        request.admin_note = admin_note
        request.processed_at = now
        payout = None
        if approve:
            survey = self.surveys.get(request.survey_id)
            if survey:
                survey.status = SurveyStatus.CANCELLED
                survey.updated_at = now
                if request.refund_amount:
                    payout = self.create_refund_payout(
                        request.request_id,
                        survey.survey_id,
                        survey.creator_id,
                        request.refund_amount,
                    )
        return ProcessedCancellation(request=request, payout=payout)

    def cancellation_request_stats(self) -> dict:
        stats = _empty_stats()
        for request in self.cancellation_requests.values():
            stats[request.status.value.lower()] += 1
            stats["total"] += 1
            if request.status == CancellationStatus.APPROVED and request.refund_amount:
                stats["total_refunded"] += request.refund_amount
        return stats

    def payout_stats(self) -> dict:
        stats = _empty_payout_stats()
        for payout in self.payouts.values():
            stats[payout.status.value.lower()] += 1
            if payout.status == PayoutStatus.PAID:
                stats["paid_amount"] += payout.amount
        return stats

    def create_refund_payout(
        self, request_id: str, survey_id: str, creator_id: str, amount: Decimal
    ) -> RefundPayoutRecord:
        record = RefundPayoutRecord(
            payout_id=uuid.uuid4().hex,
            request_id=request_id,
            survey_id=survey_id,
            creator_id=creator_id,
            amount=to_cents(amount),
        )
        self.payouts[record.payout_id] = record
        return record

    def get_refund_payout(self, payout_id: str) -> Optional[RefundPayoutRecord]:
        return self.payouts.get(payout_id)

    def fetch_next_queued_payout(self) -> Optional[RefundPayoutRecord]:
        for payout in self.payouts.values():
            if payout.status == PayoutStatus.QUEUED:
                return payout
        return None

    def mark_payout_paid(self, payout_id: str) -> Optional[RefundPayoutRecord]:
        payout = self.payouts.get(payout_id)
        if not payout:
            return None
        payout.status = PayoutStatus.PAID
        payout.paid_at = time.time()
        return payout


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_survey_record(self, row: "SurveyRow") -> SurveyRecord:
        return SurveyRecord(
            survey_id=row.survey_id,
            creator_id=row.creator_id,
            title=row.title,
            total_budget=Decimal(row.total_budget),
            reward_per_response=Decimal(row.reward_per_response),
            completed_responses=row.completed_responses,
            status=SurveyStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_request_record(
        self, row: "CancellationRequestRow"
    ) -> CancellationRequestRecord:
        return CancellationRequestRecord(
            request_id=row.request_id,
            survey_id=row.survey_id,
            reason=row.reason,
            status=CancellationStatus(row.status),
            refund_amount=(
                Decimal(row.refund_amount) if row.refund_amount is not None else None
            ),
            admin_note=row.admin_note,
            created_at=row.created_at,
            processed_at=row.processed_at,
        )

    def _to_payout_record(self, row: "RefundPayoutRow") -> RefundPayoutRecord:
        return RefundPayoutRecord(
            payout_id=row.payout_id,
            request_id=row.request_id,
            survey_id=row.survey_id,
            creator_id=row.creator_id,
            amount=Decimal(row.amount),
            status=PayoutStatus(row.status),
            created_at=row.created_at,
            paid_at=row.paid_at,
        )

    def create_survey(
        self,
        creator_id: str,
        title: str,
        total_budget: Decimal,
        reward_per_response: Decimal,
    ) -> SurveyRecord:
        now = time.time()
        with self.Session() as session:
            row = SurveyRow(
                survey_id=uuid.uuid4().hex,
                creator_id=creator_id,
                title=title,
                total_budget=total_budget,
                reward_per_response=reward_per_response,
                completed_responses=0,
                status=SurveyStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_survey_record(row)

    def get_survey(self, survey_id: str) -> Optional[SurveyRecord]:
        with self.Session() as session:
            row = session.get(SurveyRow, survey_id)
            if not row:
                return None
            return self._to_survey_record(row)

    def list_surveys(
        self, status: Optional[SurveyStatus] = None, limit: int = 100
    ) -> list[SurveyRecord]:
        with self.Session() as session:
            stmt = select(SurveyRow).order_by(SurveyRow.created_at.desc()).limit(limit)
            if status:
                stmt = stmt.where(SurveyRow.status == status.value)
            rows = session.execute(stmt).scalars().all()
            return [self._to_survey_record(row) for row in rows]

    def update_survey_status(
        self, survey_id: str, status: SurveyStatus
    ) -> Optional[SurveyRecord]:
        with self.Session() as session:
            row = session.get(SurveyRow, survey_id)
            if not row:
                return None
            row.status = status.value
            row.updated_at = time.time()
            session.commit()
            return self._to_survey_record(row)

    def record_completed_response(self, survey_id: str) -> Optional[SurveyRecord]:
        with self.Session() as session:
            row = session.get(SurveyRow, survey_id, with_for_update=True)
            if not row:
                return None
            row.completed_responses += 1
            row.updated_at = time.time()
            session.commit()
            return self._to_survey_record(row)

    def survey_status_counts(self) -> dict:
        counts = {status.value.lower(): 0 for status in SurveyStatus}
        with self.Session() as session:
            rows = session.execute(
                select(SurveyRow.status, func.count()).group_by(SurveyRow.status)
            ).all()
        for status, count in rows:
            counts[status.lower()] = count
        return counts

    def create_cancellation_request(
        self, survey_id: str, reason: Optional[str] = None
    ) -> Optional[CancellationRequestRecord]:
        with self.Session() as session:
            if self._pending_request_row(session, survey_id) is not None:
                return None
            row = CancellationRequestRow(
                request_id=uuid.uuid4().hex,
                survey_id=survey_id,
                reason=reason,
                status=CancellationStatus.PENDING.value,
                created_at=time.time(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Lost the race against another request for the same survey.
                session.rollback()
                return None
            session.refresh(row)
            return self._to_request_record(row)

    def get_cancellation_request(
        self, request_id: str
    ) -> Optional[CancellationRequestRecord]:
        with self.Session() as session:
            row = session.get(CancellationRequestRow, request_id)
            if not row:
                return None
            return self._to_request_record(row)

    def _pending_request_row(
        self, session: Session, survey_id: str
    ) -> Optional["CancellationRequestRow"]:
        stmt = (
            select(CancellationRequestRow)
            .where(
                CancellationRequestRow.survey_id == survey_id,
                CancellationRequestRow.status == CancellationStatus.PENDING.value,
            )
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def find_pending_cancellation_request(
        self, survey_id: str
    ) -> Optional[CancellationRequestRecord]:
        with self.Session() as session:
            row = self._pending_request_row(session, survey_id)
            if not row:
                return None
            return self._to_request_record(row)

    def list_cancellation_requests(
        self, status: Optional[CancellationStatus] = None, limit: int = 100
    ) -> list[CancellationRequestRecord]:
        with self.Session() as session:
            stmt = (
                select(CancellationRequestRow)
                .order_by(CancellationRequestRow.created_at.desc())
                .limit(limit)
            )
            if status:
                stmt = stmt.where(CancellationRequestRow.status == status.value)
            rows = session.execute(stmt).scalars().all()
            return [self._to_request_record(row) for row in rows]

    def process_cancellation_request(
        self,
        request_id: str,
        *,
        approve: bool,
        refund_amount: Optional[Decimal] = None,
        admin_note: Optional[str] = None,
    ) -> Optional[ProcessedCancellation]:
        now = time.time()
        with self.Session() as session:
            row = session.get(CancellationRequestRow, request_id, with_for_update=True)
            if not row or row.status != CancellationStatus.PENDING.value:
                return None
            row.status = (
                CancellationStatus.APPROVED.value
                if approve
                else CancellationStatus.REJECTED.value
            )
            row.refund_amount = (
                to_cents(refund_amount)
                if approve and refund_amount is not None
                else None
            )
            row.admin_note = admin_note
            row.processed_at = now
            payout_row = None
            if approve:
                survey = session.get(SurveyRow, row.survey_id, with_for_update=True)
                if survey:
                    survey.status = SurveyStatus.CANCELLED.value
                    survey.updated_at = now
                    if row.refund_amount:
                        payout_row = RefundPayoutRow(
                            payout_id=uuid.uuid4().hex,
                            request_id=row.request_id,
                            survey_id=survey.survey_id,
                            creator_id=survey.creator_id,
                            amount=row.refund_amount,
                            status=PayoutStatus.QUEUED.value,
                            created_at=now,
                        )
                        session.add(payout_row)
            session.commit()
            return ProcessedCancellation(
                request=self._to_request_record(row),
                payout=self._to_payout_record(payout_row) if payout_row else None,
            )

    def cancellation_request_stats(self) -> dict:
        stats = _empty_stats()
        with self.Session() as session:
            rows = session.execute(
                select(
                    CancellationRequestRow.status,
                    CancellationRequestRow.refund_amount,
                )
            ).all()
        for status, refund_amount in rows:
            stats[status.lower()] += 1
            stats["total"] += 1
            if status == CancellationStatus.APPROVED.value and refund_amount:
                stats["total_refunded"] += Decimal(refund_amount)
        return stats

    def payout_stats(self) -> dict:
        stats = _empty_payout_stats()
        with self.Session() as session:
            rows = session.execute(
                select(RefundPayoutRow.status, RefundPayoutRow.amount)
            ).all()
        for status, amount in rows:
            stats[status.lower()] += 1
            if status == PayoutStatus.PAID.value:
                stats["paid_amount"] += Decimal(amount)
        return stats

    def create_refund_payout(
        self, request_id: str, survey_id: str, creator_id: str, amount: Decimal
    ) -> RefundPayoutRecord:
        with self.Session() as session:
            row = RefundPayoutRow(
                payout_id=uuid.uuid4().hex,
                request_id=request_id,
                survey_id=survey_id,
                creator_id=creator_id,
                amount=to_cents(amount),
                status=PayoutStatus.QUEUED.value,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_payout_record(row)

    def get_refund_payout(self, payout_id: str) -> Optional[RefundPayoutRecord]:
        with self.Session() as session:
            row = session.get(RefundPayoutRow, payout_id)
            if not row:
                return None
            return self._to_payout_record(row)

    def fetch_next_queued_payout(self) -> Optional[RefundPayoutRecord]:
        with self.Session() as session:
            stmt = (
                select(RefundPayoutRow)
                .where(RefundPayoutRow.status == PayoutStatus.QUEUED.value)
                .order_by(RefundPayoutRow.created_at.asc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._to_payout_record(row)

    def mark_payout_paid(self, payout_id: str) -> Optional[RefundPayoutRecord]:
        with self.Session() as session:
            row = session.get(RefundPayoutRow, payout_id, with_for_update=True)
            if not row:
                return None
            row.status = PayoutStatus.PAID.value
            row.paid_at = time.time()
            session.commit()
            return self._to_payout_record(row)


Base = declarative_base()


class SurveyRow(Base):
    __tablename__ = "surveys"

    survey_id = Column(String, primary_key=True)
    creator_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    total_budget = Column(Numeric(14, 2), nullable=False)
    reward_per_response = Column(Numeric(14, 2), nullable=False)
    completed_responses = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class CancellationRequestRow(Base):
    __tablename__ = "cancellation_requests"
    # At most one PENDING request per survey.
    __table_args__ = (
        Index(
            "uq_cancellation_requests_pending_survey",
            "survey_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    request_id = Column(String, primary_key=True)
    survey_id = Column(String, nullable=False, index=True)
    reason = Column(String, nullable=True)
    status = Column(String, nullable=False, index=True)
    refund_amount = Column(Numeric(14, 2), nullable=True)
    admin_note = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    processed_at = Column(Float, nullable=True)


class RefundPayoutRow(Base):
    __tablename__ = "refund_payouts"

    payout_id = Column(String, primary_key=True)
    request_id = Column(String, nullable=False, index=True)
    survey_id = Column(String, nullable=False)
    creator_id = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    status = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
