"""Redis-backed record store for visitor requests.

Keys follow a ``visitor:<entity>:<id>`` naming convention, see
:mod:`utils.redis` for the full list. The only mutation after creation is
:meth:`VisitorStore.conditional_update_status`, which commits a status
change only while the record still holds the expected status.
"""

from __future__ import annotations

from typing import Optional

import redis
from loguru import logger
from redis.exceptions import RedisError, WatchError

from core.exceptions import DuplicateCode, StoreUnavailable
from schemas.visitor import VisitorRequest, VisitorStatus
from utils.redis import decode_map, decode_value

logger = logger.bind(module="visitor_store")

RECORD_KEY = "visitor:record:{}"
TOKEN_KEY = "visitor:token:{}"
CODE_KEY = "visitor:code:{}"
CREATED_INDEX = "visitor:created"
PENDING_INDEX = "visitor:pending"


class VisitorStore:
    """Persistence for :class:`VisitorRequest` records."""

    def __init__(self, redis_client: redis.Redis, *, max_watch_retries: int = 5):
        self.redis = redis_client
        self.max_watch_retries = max_watch_retries

    # create routine
    def create(self, record: VisitorRequest) -> VisitorRequest:
        """Persist a new record.

        The visitor code is claimed with ``SET NX`` first; a taken code
        raises :class:`DuplicateCode` and nothing else is written.
        """
        code_key = CODE_KEY.format(record.visitor_code)
        claimed = False
        try:
            claimed = self.redis.set(code_key, record.id, nx=True)
            if not claimed:
                raise DuplicateCode(f"visitor code {record.visitor_code} in use")
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(RECORD_KEY.format(record.id), mapping=record.to_redis())
            pipe.set(TOKEN_KEY.format(record.decision_token), record.id)
            pipe.zadd(CREATED_INDEX, {record.id: record.created_at})
            if record.is_pending:
                pipe.zadd(PENDING_INDEX, {record.id: record.expires_at})
            pipe.execute()
        except RedisError as exc:
            logger.exception("failed to save visitor {}: {}", record.id, exc)
            if claimed:
                self._release_code(code_key, record.id)
            raise StoreUnavailable("failed to save visitor") from exc
        return record

    def _release_code(self, code_key: str, visitor_id: str) -> None:
        try:
            if decode_value(self.redis.get(code_key)) == visitor_id:
                self.redis.delete(code_key)
        except RedisError as exc:
            logger.warning("could not release {} for {}: {}", code_key, visitor_id, exc)

    def code_exists(self, code: str) -> bool:
        try:
            return bool(self.redis.exists(CODE_KEY.format(code)))
        except RedisError as exc:
            raise StoreUnavailable("failed to check visitor code") from exc

    # find_by_id routine
    def find_by_id(self, visitor_id: str) -> Optional[VisitorRequest]:
        if not visitor_id:
            return None
        try:
            data = self.redis.hgetall(RECORD_KEY.format(visitor_id))
        except RedisError as exc:
            logger.exception("failed to fetch visitor {}: {}", visitor_id, exc)
            raise StoreUnavailable("failed to fetch visitor") from exc
        return VisitorRequest.from_redis(decode_map(data)) if data else None

    # find_by_token routine
    def find_by_token(self, token: str) -> Optional[VisitorRequest]:
        if not token:
            return None
        try:
            visitor_id = decode_value(self.redis.get(TOKEN_KEY.format(token)))
        except RedisError as exc:
            logger.exception("failed to resolve decision token: {}", exc)
            raise StoreUnavailable("failed to resolve token") from exc
        if not visitor_id:
            return None
        record = self.find_by_id(visitor_id)
        # the token index is only trusted when the record agrees
        if record is None or record.decision_token != token:
            return None
        return record

    # conditional_update_status routine
    def conditional_update_status(
        self,
        visitor_id: str,
        expected: VisitorStatus,
        new_status: VisitorStatus,
        fields: dict | None = None,
    ) -> Optional[VisitorRequest]:
        """Set ``status`` (and ``fields``) only if it currently equals ``expected``.

        Uses an optimistic ``WATCH``/``MULTI`` transaction so a concurrent
        writer causes a re-check rather than a lost update. Returns the
        updated record, or ``None`` when the record is missing or no longer
        holds ``expected``.
        """
        key = RECORD_KEY.format(visitor_id)
        mapping = {"status": new_status.value}
        for name, value in (fields or {}).items():
            mapping[name] = "" if value is None else str(value)
        try:
            with self.redis.pipeline() as pipe:
                for _ in range(self.max_watch_retries):
                    try:
                        pipe.watch(key)
                        current = decode_value(pipe.hget(key, "status"))
                        if current != expected.value:
                            pipe.unwatch()
                            return None
                        pipe.multi()
                        pipe.hset(key, mapping=mapping)
                        if new_status != VisitorStatus.PENDING:
                            pipe.zrem(PENDING_INDEX, visitor_id)
                        pipe.execute()
                        break
                    except WatchError:
                        logger.debug("status of {} changed during update; retrying", visitor_id)
                        continue
                else:
                    return None
        except RedisError as exc:
            logger.exception("failed to update visitor {}: {}", visitor_id, exc)
            raise StoreUnavailable("failed to update visitor") from exc
        return self.find_by_id(visitor_id)

    # list_all routine
    def list_all(self, newest_first: bool = True) -> list[VisitorRequest]:
        try:
            if newest_first:
                ids = self.redis.zrevrange(CREATED_INDEX, 0, -1)
            else:
                ids = self.redis.zrange(CREATED_INDEX, 0, -1)
        except RedisError as exc:
            logger.exception("Redis unavailable while listing visitors")
            raise StoreUnavailable("failed to list visitors") from exc
        records = []
        for raw in ids:
            record = self.find_by_id(decode_value(raw))
            if record is not None:
                records.append(record)
        return records

    def due_for_expiry(self, now: float) -> list[str]:
        """Return ids of pending records whose request window has passed."""
        try:
            ids = self.redis.zrangebyscore(PENDING_INDEX, "-inf", now)
        except RedisError as exc:
            raise StoreUnavailable("failed to scan pending visitors") from exc
        return [decode_value(i) for i in ids]
