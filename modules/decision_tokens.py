"""Opaque decision tokens embedded in host approve/reject links."""

from __future__ import annotations

import secrets
from typing import Callable

from loguru import logger
from redis.exceptions import RedisError, WatchError

from config import PASS_TIMINGS
from core.exceptions import (
    AlreadyDecided,
    NotFoundError,
    StoreUnavailable,
    TokenExpired,
    TokenNotFound,
)
from modules.visitor_store import PENDING_INDEX, RECORD_KEY, TOKEN_KEY, VisitorStore
from schemas.visitor import VisitorRequest
from utils.redis import decode_map
from utils.time import now_ts

logger = logger.bind(module="decision_tokens")

TOKEN_BYTES = 16


def new_token() -> str:
    """Return a 32 character hex token from a CSPRNG."""
    return secrets.token_hex(TOKEN_BYTES)


class DecisionTokenStore:
    """Issue and validate decision tokens stored on visitor records.

    Tokens are single-use in effect: validation fails with
    :class:`AlreadyDecided` as soon as the bound record leaves ``pending``.
    """

    def __init__(
        self,
        store: VisitorStore,
        ttl_secs: int | None = None,
        clock: Callable[[], float] = now_ts,
    ):
        self.store = store
        self._ttl_secs = ttl_secs
        self.clock = clock

    @property
    def ttl_secs(self) -> int:
        return self._ttl_secs if self._ttl_secs is not None else PASS_TIMINGS.token_ttl_secs

    def generate(self, issued_at: float | None = None) -> tuple[str, float]:
        """Return a fresh ``(token, expires_at)`` pair without persisting it."""
        issued_at = self.clock() if issued_at is None else issued_at
        return new_token(), issued_at + self.ttl_secs

    # issue routine
    def issue(self, visitor_id: str) -> tuple[str, float]:
        """Bind a new token to a pending record, replacing any previous one.

        The request window is pushed out to at least the new token's expiry
        so the sweeper cannot expire a record whose link is still valid.
        Raises :class:`AlreadyDecided` once the record has left ``pending``.
        """
        key = RECORD_KEY.format(visitor_id)
        token, token_expires_at = self.generate()
        try:
            with self.store.redis.pipeline() as pipe:
                for _ in range(self.store.max_watch_retries):
                    try:
                        pipe.watch(key)
                        raw = pipe.hgetall(key)
                        if not raw:
                            pipe.unwatch()
                            raise NotFoundError(f"visitor {visitor_id} not found")
                        record = VisitorRequest.from_redis(decode_map(raw))
                        if not record.is_pending:
                            pipe.unwatch()
                            raise AlreadyDecided(record.status.value)
                        expires_at = max(record.expires_at, token_expires_at)
                        pipe.multi()
                        pipe.hset(
                            key,
                            mapping={
                                "decision_token": token,
                                "token_expires_at": str(token_expires_at),
                                "expires_at": str(expires_at),
                            },
                        )
                        pipe.zadd(PENDING_INDEX, {visitor_id: expires_at})
                        pipe.set(TOKEN_KEY.format(token), visitor_id)
                        if record.decision_token:
                            pipe.delete(TOKEN_KEY.format(record.decision_token))
                        pipe.execute()
                        break
                    except WatchError:
                        logger.debug("visitor {} changed while issuing a token; retrying", visitor_id)
                        continue
                else:
                    raise StoreUnavailable("visitor record kept changing while issuing a token")
        except RedisError as exc:
            logger.exception("failed to issue token for {}: {}", visitor_id, exc)
            raise StoreUnavailable("failed to issue decision token") from exc
        logger.info("Issued decision token for {}", visitor_id)
        return token, token_expires_at

    # validate routine
    def validate(self, token: str) -> VisitorRequest:
        """Return the pending record bound to ``token``.

        Raises :class:`TokenNotFound`, :class:`TokenExpired` or
        :class:`AlreadyDecided`.
        """
        record = self.store.find_by_token(token) if token else None
        if record is None:
            raise TokenNotFound("This approval link is invalid or has expired.")
        if not record.is_pending:
            raise AlreadyDecided(record.status.value)
        if self.clock() > record.token_expires_at:
            raise TokenExpired("This approval link has expired.")
        return record
