"""
Worker loop that pays out queued creator refunds.

Paying means flipping the payout record to PAID; the actual money transfer
is handled by the finance team from the paid payout list.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from survey_backend.config import get_settings
from survey_backend.db import DbClient, RefundPayoutRecord
from survey_backend.dependencies import get_db_client, get_queue_client
from survey_backend.queue import PayoutQueue
from survey_backend.statuses import PayoutStatus

logger = logging.getLogger(__name__)


def process_payout(payout: RefundPayoutRecord, db: DbClient) -> None:
    if payout.status == PayoutStatus.PAID:
        logger.info("Payout %s already paid, skipping", payout.payout_id)
        return
    db.mark_payout_paid(payout.payout_id)
    logger.info(
        "Paid refund %s to creator %s for survey %s (payout %s)",
        payout.amount,
        payout.creator_id,
        payout.survey_id,
        payout.payout_id,
    )


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[PayoutQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one payout from the queue (or DB fallback). Returns True if processed.

    A queued payout is acked only after it is marked paid; on failure it is
    released back to the front of the queue and the error propagates.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()

    payout_id = queue.reserve(block=block, timeout=timeout)
    if not payout_id:
        # Pick up payouts that were recorded but never reached the queue.
        payout = db.fetch_next_queued_payout()
        if not payout:
            return False
        process_payout(payout, db)
        return True

    payout = db.get_refund_payout(payout_id)
    if not payout:
        logger.warning(
            "Received payout_id %s from queue but no DB record found", payout_id
        )
        queue.ack(payout_id)
        return False
    try:
        process_payout(payout, db)
    except Exception:
        queue.release(payout_id)
        raise
    queue.ack(payout_id)
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    logging.basicConfig(level=get_settings().log_level.upper())
    db = get_db_client()
    queue = get_queue_client()
    recovered = queue.requeue_in_flight()
    if recovered:
        logger.info("Requeued %d payouts left in flight by a previous worker", recovered)
    while True:
        try:
            processed = process_next(
                db=db, queue=queue, block=True, timeout=int(poll_interval_seconds)
            )
        except Exception:
            logger.exception("Failed to process payout")
            processed = False
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    run_loop()
