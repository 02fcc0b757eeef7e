"""
Refund payout dispatch queue.

Payout ids are reserved rather than popped: a reserved id sits in an
in-flight list until the worker acks it, so a worker that dies halfway
through a payout leaves the id behind for ``requeue_in_flight`` to hand out
again. Paying twice is prevented by the payout status check in the worker,
not by the queue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NewType, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

PayoutId = NewType("PayoutId", str)


class PayoutQueue(Protocol):
    def enqueue(self, payout_id: PayoutId) -> None:
        ...

    def reserve(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[PayoutId]:
        ...

    def ack(self, payout_id: PayoutId) -> None:
        ...

    def release(self, payout_id: PayoutId) -> None:
        ...

    def requeue_in_flight(self) -> int:
        ...


@dataclass
class InMemoryPayoutQueue:
    """FIFO queue with an in-flight list, for tests and local runs."""

    items: list[PayoutId] = field(default_factory=list)
    in_flight: list[PayoutId] = field(default_factory=list)

    def enqueue(self, payout_id: PayoutId) -> None:
        self.items.append(payout_id)

    def reserve(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[PayoutId]:
        if not self.items:
            return None
        payout_id = self.items.pop(0)
        self.in_flight.append(payout_id)
        return payout_id

    def ack(self, payout_id: PayoutId) -> None:
        if payout_id in self.in_flight:
            self.in_flight.remove(payout_id)

    def release(self, payout_id: PayoutId) -> None:
        self.ack(payout_id)
        self.items.insert(0, payout_id)

    def requeue_in_flight(self) -> int:
        count = len(self.in_flight)
        self.items[:0] = self.in_flight
        self.in_flight.clear()
        return count


@dataclass
class RedisPayoutQueue:
    """
    Reliable-queue pattern on two Redis lists: ``LMOVE`` from the pending
    list into ``<queue_key>:in-flight`` on reserve, ``LREM`` on ack.
    """

    url: str
    queue_key: str = "survey:payouts"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)
        self.in_flight_key = f"{self.queue_key}:in-flight"

    def enqueue(self, payout_id: PayoutId) -> None:
        self.client.rpush(self.queue_key, payout_id)

    def reserve(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[PayoutId]:
        try:
            if block:
                raw = self.client.blmove(
                    self.queue_key, self.in_flight_key, timeout or 0, "LEFT", "RIGHT"
                )
            else:
                raw = self.client.lmove(
                    self.queue_key, self.in_flight_key, "LEFT", "RIGHT"
                )
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; report an empty queue and
            # let the worker loop retry with a fresh client.
            self.client = redis.Redis.from_url(self.url)
            return None
        if raw is None:
            return None
        return PayoutId(raw.decode("utf-8"))

    def ack(self, payout_id: PayoutId) -> None:
        self.client.lrem(self.in_flight_key, 1, payout_id)

    def release(self, payout_id: PayoutId) -> None:
        pipe = self.client.pipeline()
        pipe.lrem(self.in_flight_key, 1, payout_id)
        pipe.lpush(self.queue_key, payout_id)
        pipe.execute()

    def requeue_in_flight(self) -> int:
        count = 0
        while self.client.lmove(self.in_flight_key, self.queue_key, "RIGHT", "LEFT"):
            count += 1
        return count
