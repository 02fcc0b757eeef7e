import unittest
from decimal import Decimal

from survey_backend.db import InMemoryDbClient, SqlDbClient
from survey_backend.statuses import CancellationStatus, PayoutStatus, SurveyStatus


class DbClientCases:
    """Behaviour both db clients must share; mixed into one TestCase per client."""

    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()

    def _survey(self, budget="55000", reward="1000"):
        return self.db.create_survey(
            "creator-1", "Galbi taste test", Decimal(budget), Decimal(reward)
        )

    def test_create_and_get_survey(self):
        survey = self._survey()
        self.assertEqual(survey.status, SurveyStatus.PENDING)
        fetched = self.db.get_survey(survey.survey_id)
        self.assertIsNotNone(fetched)
        self.assertEqual(fetched.total_budget, Decimal("55000"))
        self.assertEqual(fetched.reward_per_response, Decimal("1000"))
        self.assertIsNone(self.db.get_survey("missing"))

    def test_status_and_response_count(self):
        survey = self._survey()
        self.db.update_survey_status(survey.survey_id, SurveyStatus.ACTIVE)
        self.db.record_completed_response(survey.survey_id)
        updated = self.db.record_completed_response(survey.survey_id)
        self.assertEqual(updated.completed_responses, 2)
        self.assertEqual(updated.status, SurveyStatus.ACTIVE)

        active = self.db.list_surveys(status=SurveyStatus.ACTIVE)
        self.assertEqual([s.survey_id for s in active], [survey.survey_id])
        self.assertEqual(self.db.list_surveys(status=SurveyStatus.PENDING), [])

    def test_survey_status_counts(self):
        self._survey()
        active = self._survey()
        self.db.update_survey_status(active.survey_id, SurveyStatus.ACTIVE)
        counts = self.db.survey_status_counts()
        self.assertEqual(counts["pending"], 1)
        self.assertEqual(counts["active"], 1)
        self.assertEqual(counts["cancelled"], 0)

    def test_approve_cancels_survey_and_records_payout(self):
        survey = self._survey()
        request = self.db.create_cancellation_request(survey.survey_id, "done early")
        self.assertEqual(request.status, CancellationStatus.PENDING)

        processed = self.db.process_cancellation_request(
            request.request_id,
            approve=True,
            refund_amount=Decimal("53900"),
            admin_note="ok",
        )
        self.assertEqual(processed.request.status, CancellationStatus.APPROVED)
        self.assertEqual(processed.request.refund_amount, Decimal("53900"))
        self.assertIsNotNone(processed.request.processed_at)
        self.assertEqual(
            self.db.get_survey(survey.survey_id).status, SurveyStatus.CANCELLED
        )

        payout = processed.payout
        self.assertIsNotNone(payout)
        self.assertEqual(payout.amount, Decimal("53900"))
        self.assertEqual(payout.creator_id, "creator-1")
        self.assertEqual(payout.status, PayoutStatus.QUEUED)
        self.assertEqual(self.db.fetch_next_queued_payout().payout_id, payout.payout_id)

    def test_approve_with_zero_refund_records_no_payout(self):
        survey = self._survey()
        request = self.db.create_cancellation_request(survey.survey_id)
        processed = self.db.process_cancellation_request(
            request.request_id, approve=True, refund_amount=Decimal(0)
        )
        self.assertEqual(processed.request.status, CancellationStatus.APPROVED)
        self.assertIsNone(processed.payout)
        self.assertIsNone(self.db.fetch_next_queued_payout())

    def test_refund_rounded_to_cents(self):
        survey = self._survey(budget="0.55", reward="0.05")
        request = self.db.create_cancellation_request(survey.survey_id)
        processed = self.db.process_cancellation_request(
            request.request_id, approve=True, refund_amount=Decimal("0.055")
        )
        self.assertEqual(processed.request.refund_amount, Decimal("0.06"))
        self.assertEqual(processed.payout.amount, Decimal("0.06"))
        stored = self.db.get_cancellation_request(request.request_id)
        self.assertEqual(stored.refund_amount, Decimal("0.06"))

    def test_reject_cancellation_leaves_survey(self):
        survey = self._survey()
        request = self.db.create_cancellation_request(survey.survey_id)
        processed = self.db.process_cancellation_request(
            request.request_id, approve=False, refund_amount=Decimal("10")
        )
        self.assertEqual(processed.request.status, CancellationStatus.REJECTED)
        self.assertIsNone(processed.request.refund_amount)
        self.assertIsNone(processed.payout)
        self.assertEqual(
            self.db.get_survey(survey.survey_id).status, SurveyStatus.PENDING
        )

    def test_processed_request_cannot_be_processed_again(self):
        survey = self._survey()
        request = self.db.create_cancellation_request(survey.survey_id)
        first = self.db.process_cancellation_request(
            request.request_id, approve=True, refund_amount=Decimal("53900")
        )
        self.assertIsNotNone(first)

        self.assertIsNone(
            self.db.process_cancellation_request(request.request_id, approve=False)
        )
        self.assertIsNone(
            self.db.process_cancellation_request(
                request.request_id, approve=True, refund_amount=Decimal("53900")
            )
        )
        stored = self.db.get_cancellation_request(request.request_id)
        self.assertEqual(stored.status, CancellationStatus.APPROVED)
        self.assertEqual(stored.refund_amount, Decimal("53900"))
        self.assertEqual(self.db.payout_stats()["queued"], 1)
        self.assertIsNone(
            self.db.process_cancellation_request("missing", approve=False)
        )

    def test_one_pending_request_per_survey(self):
        survey = self._survey()
        first = self.db.create_cancellation_request(survey.survey_id)
        self.assertIsNone(self.db.create_cancellation_request(survey.survey_id))
        self.assertEqual(
            self.db.find_pending_cancellation_request(survey.survey_id).request_id,
            first.request_id,
        )

        self.db.process_cancellation_request(first.request_id, approve=False)
        self.assertIsNone(self.db.find_pending_cancellation_request(survey.survey_id))
        second = self.db.create_cancellation_request(survey.survey_id)
        self.assertIsNotNone(second)
        self.assertNotEqual(second.request_id, first.request_id)

    def test_list_and_stats(self):
        first = self.db.create_cancellation_request(self._survey().survey_id)
        self.db.create_cancellation_request(self._survey().survey_id)
        self.db.process_cancellation_request(
            first.request_id, approve=True, refund_amount=Decimal("53900")
        )

        pending = self.db.list_cancellation_requests(status=CancellationStatus.PENDING)
        self.assertEqual(len(pending), 1)
        self.assertEqual(len(self.db.list_cancellation_requests()), 2)

        stats = self.db.cancellation_request_stats()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["approved"], 1)
        self.assertEqual(stats["rejected"], 0)
        self.assertEqual(stats["total_refunded"], Decimal("53900"))

    def test_payout_lifecycle(self):
        survey = self._survey()
        request = self.db.create_cancellation_request(survey.survey_id)
        payout = self.db.create_refund_payout(
            request.request_id, survey.survey_id, survey.creator_id, Decimal("53900")
        )
        self.assertEqual(payout.status, PayoutStatus.QUEUED)
        queued = self.db.fetch_next_queued_payout()
        self.assertEqual(queued.payout_id, payout.payout_id)

        paid = self.db.mark_payout_paid(payout.payout_id)
        self.assertEqual(paid.status, PayoutStatus.PAID)
        self.assertIsNotNone(paid.paid_at)
        self.assertIsNone(self.db.fetch_next_queued_payout())
        self.assertIsNone(self.db.mark_payout_paid("missing"))

        stats = self.db.payout_stats()
        self.assertEqual(stats["queued"], 0)
        self.assertEqual(stats["paid"], 1)
        self.assertEqual(stats["paid_amount"], Decimal("53900"))


class SqlDbClientTests(DbClientCases, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def make_db(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:")


class InMemoryDbClientTests(DbClientCases, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()


if __name__ == "__main__":
    unittest.main()
