"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, HTTPException

from survey_backend.config import get_settings
from survey_backend.db import DbClient, InMemoryDbClient, SqlDbClient
from survey_backend.queue import InMemoryPayoutQueue, PayoutQueue, RedisPayoutQueue

_db_client: DbClient | None = None
_queue_client: PayoutQueue | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so survey and request state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_queue_client() -> PayoutQueue:
    """
    Return a singleton queue client for dispatching refund payouts to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisPayoutQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryPayoutQueue()
    return _queue_client


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    settings = get_settings()
    if not settings.admin_token:
        return
    if x_admin_token is None or not hmac.compare_digest(
        x_admin_token, settings.admin_token
    ):
        raise HTTPException(status_code=401, detail="Admin token required")
