"""
Usage ledger: self-expiring log of admitted requests per client.

Two backends share one interface:
- SQLUsageLedger stores rows in ``usage_events``; a LedgerSweeper deletes rows
  older than the window in the background. Counts always filter on the window,
  so rows awaiting the sweep are already invisible.
- RedisUsageLedger keeps one sorted set per client scored by timestamp, trims
  it on every append and lets Redis expire idle sets natively.

Backend errors surface as LedgerUnavailable; the caller decides the policy.
"""
import asyncio
import contextlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from match_gateway_server.config import Settings
from match_gateway_server.db_models import ENDPOINT_MAX_LENGTH, UsageEvent, utcnow
from match_gateway_server.errors import LedgerUnavailable
from match_gateway_server.logging_config import get_logger

logger = get_logger(__name__)


class UsageLedger:
    """Interface for usage ledger backends"""

    def count_since(self, client_id: str, since: datetime) -> int:
        """Number of events for client_id with timestamp >= since"""
        raise NotImplementedError

    def append(self, client_id: str, endpoint: str, timestamp: datetime) -> None:
        raise NotImplementedError

    def prune(self, older_than: datetime) -> int:
        """Physically remove events older than the cutoff; returns rows removed"""
        raise NotImplementedError

    def ping(self) -> None:
        raise NotImplementedError


class SQLUsageLedger(UsageLedger):
    """Ledger backed by the ``usage_events`` table"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def count_since(self, client_id: str, since: datetime) -> int:
        try:
            with self._session_factory() as session:
                return session.execute(
                    select(func.count(UsageEvent.id)).where(
                        UsageEvent.client_id == client_id,
                        UsageEvent.timestamp >= since,
                    )
                ).scalar_one()
        except SQLAlchemyError as e:
            raise LedgerUnavailable() from e

    def append(self, client_id: str, endpoint: str, timestamp: datetime) -> None:
        # Paths are client-supplied; an over-long one must still be recorded
        endpoint = endpoint[:ENDPOINT_MAX_LENGTH]
        try:
            with self._session_factory() as session:
                session.add(UsageEvent(client_id=client_id, endpoint=endpoint, timestamp=timestamp))
                session.commit()
        except SQLAlchemyError as e:
            raise LedgerUnavailable() from e

    def prune(self, older_than: datetime) -> int:
        try:
            with self._session_factory() as session:
                result = session.execute(delete(UsageEvent).where(UsageEvent.timestamp < older_than))
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise LedgerUnavailable() from e

    def ping(self) -> None:
        try:
            with self._session_factory() as session:
                session.execute(select(1)).scalar_one()
        except SQLAlchemyError as e:
            raise LedgerUnavailable() from e


def _epoch(ts: datetime) -> float:
    """Epoch seconds of a naive UTC timestamp"""
    return ts.replace(tzinfo=timezone.utc).timestamp()


class RedisUsageLedger(UsageLedger):
    """Ledger backed by one Redis sorted set per client"""

    def __init__(self, client: redis.Redis, window_seconds: int = 3600, namespace: str = "usage"):
        self._redis = client
        self.window_seconds = window_seconds
        self.namespace = namespace

    def _key(self, client_id: str) -> str:
        return f"{self.namespace}:{client_id}"

    def count_since(self, client_id: str, since: datetime) -> int:
        try:
            return int(self._redis.zcount(self._key(client_id), _epoch(since), "+inf"))
        except redis.RedisError as e:
            raise LedgerUnavailable() from e

    def append(self, client_id: str, endpoint: str, timestamp: datetime) -> None:
        key = self._key(client_id)
        score = _epoch(timestamp)
        # Members must be unique per event even within the same instant
        member = f"{score:.6f}:{uuid.uuid4().hex}:{endpoint[:ENDPOINT_MAX_LENGTH]}"
        try:
            pipe = self._redis.pipeline()
            pipe.zadd(key, {member: score})
            pipe.zremrangebyscore(key, "-inf", f"({score - self.window_seconds}")
            pipe.expire(key, self.window_seconds)
            pipe.execute()
        except redis.RedisError as e:
            raise LedgerUnavailable() from e

    def prune(self, older_than: datetime) -> int:
        # Sets are trimmed on append and expire on their own
        return 0

    def ping(self) -> None:
        try:
            self._redis.ping()
        except redis.RedisError as e:
            raise LedgerUnavailable() from e


class LedgerSweeper:
    """Background task that periodically prunes events past the window"""

    def __init__(self, ledger: UsageLedger, window_seconds: int = 3600, interval_seconds: int = 300):
        self.ledger = ledger
        self.window_seconds = window_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self, now: Optional[datetime] = None) -> int:
        """Prune once; ledger outages are logged and retried on the next tick"""
        cutoff = (now or utcnow()) - timedelta(seconds=self.window_seconds)
        try:
            removed = await asyncio.to_thread(self.ledger.prune, cutoff)
        except LedgerUnavailable as e:
            logger.warning("ledger_sweep_failed", error_type=type(e.__cause__ or e).__name__)
            return 0
        if removed:
            logger.debug("ledger_swept", removed=removed, cutoff=cutoff.isoformat())
        return removed

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("ledger_sweep_crashed", error_type=type(e).__name__, exc_info=e)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())
            logger.info("ledger_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("ledger_sweeper_stopped")


def build_usage_ledger(config: Settings, session_factory: sessionmaker) -> UsageLedger:
    """Instantiate the backend selected by USAGE_LEDGER_BACKEND"""
    if config.usage_ledger_backend == "redis":
        client = redis.Redis.from_url(
            config.redis_url,
            socket_timeout=config.redis_socket_timeout,
            socket_connect_timeout=config.redis_socket_timeout,
        )
        return RedisUsageLedger(client, window_seconds=config.rate_limit_window_seconds)
    return SQLUsageLedger(session_factory)
