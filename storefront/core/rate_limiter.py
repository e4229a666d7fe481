"""
storefront/core/rate_limiter.py — Fixed-window rate limiting
Named policies per endpoint category, a pluggable counter store and the
429 response contract (Retry-After / X-RateLimit-* headers).

The default store is process-local. Point RATE_LIMIT_STORAGE_URI at a
`limits` storage (e.g. redis://) to share counters across instances.
"""
from __future__ import annotations

import math
import threading
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from fastapi import Request
from fastapi.responses import JSONResponse
from limits.storage import Storage, storage_from_string
from loguru import logger
from pydantic import BaseModel, Field
from slowapi.util import get_remote_address

from storefront.models import RateLimitRecord
from storefront.utils.timezone import UTC

DEFAULT_MESSAGE = "Demasiadas solicitudes. Intentá más tarde."


class RateLimitPolicy(BaseModel):
    window_ms: int = Field(gt=0)
    max_requests: int = Field(gt=0)
    message: str = DEFAULT_MESSAGE

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


# ── Rate limits per endpoint category ─────────────────────────────────────────

RATE_LIMITS: dict[str, RateLimitPolicy] = {
    "login": RateLimitPolicy(
        window_ms=15 * 60 * 1000,
        max_requests=5,
        message="Demasiados intentos de login. Intentá en 15 minutos.",
    ),
    "registro": RateLimitPolicy(
        window_ms=60 * 60 * 1000,
        max_requests=3,
        message="Demasiados registros desde esta IP. Intentá en 1 hora.",
    ),
    "api": RateLimitPolicy(
        window_ms=60 * 1000,
        max_requests=60,
        message="Límite de solicitudes excedido. Intentá en 1 minuto.",
    ),
    "checkout": RateLimitPolicy(
        window_ms=5 * 60 * 1000,
        max_requests=3,
        message="Demasiados intentos de compra. Intentá en 5 minutos.",
    ),
    "upload": RateLimitPolicy(
        window_ms=60 * 1000,
        max_requests=10,
        message="Demasiadas subidas de archivos. Intentá en 1 minuto.",
    ),
}


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return get_remote_address(request) or "unknown"


def rate_limit_key(request: Request, identifier: Optional[str] = None) -> str:
    return identifier or f"{get_client_ip(request)}:{request.url.path}"


# ──────────────────────────────────────────────────────────────────────────────
# Counter stores
# ──────────────────────────────────────────────────────────────────────────────

class RateLimitStore(Protocol):
    def hit(self, key: str, window_seconds: float, now: float) -> RateLimitRecord:
        """Atomically open-or-increment the window for `key` and return it."""
        ...

    def get(self, key: str) -> Optional[RateLimitRecord]: ...

    def sweep(self, now: float) -> int: ...

    def reset(self) -> None: ...


class MemoryRateLimitStore:
    """
    Process-local store; increments happen under a lock. Kept alongside the
    `limits` adapter because windows here are in milliseconds while `limits`
    expiries are whole seconds.
    """

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_seconds: float, now: float) -> RateLimitRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None or record.reset_time <= now:
                record = RateLimitRecord(count=1, reset_time=now + window_seconds)
                self._records[key] = record
            else:
                record.count += 1
            return record.model_copy()

    def get(self, key: str) -> Optional[RateLimitRecord]:
        with self._lock:
            record = self._records.get(key)
            return record.model_copy() if record else None

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [k for k, r in self._records.items() if r.reset_time <= now]
            for key in expired:
                del self._records[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class LimitsRateLimitStore:
    """
    Adapter over a `limits` storage backend (memory://, redis://, memcached://).
    Expiry is enforced by the backend itself, so sweep() is a no-op.
    """

    def __init__(self, storage: Storage, namespace: str = "storefront-rl") -> None:
        self._storage = storage
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}/{key}"

    def hit(self, key: str, window_seconds: float, now: float) -> RateLimitRecord:
        storage_key = self._key(key)
        count = self._storage.incr(storage_key, max(1, math.ceil(window_seconds)))
        return RateLimitRecord(count=count, reset_time=self._storage.get_expiry(storage_key))

    def get(self, key: str) -> Optional[RateLimitRecord]:
        storage_key = self._key(key)
        count = self._storage.get(storage_key)
        if not count:
            return None
        return RateLimitRecord(count=count, reset_time=self._storage.get_expiry(storage_key))

    def sweep(self, now: float) -> int:
        return 0

    def reset(self) -> None:
        self._storage.reset()


def build_store(storage_uri: str) -> RateLimitStore:
    """memory:// → in-process dict; anything else → a `limits` storage."""
    if storage_uri.startswith("memory://"):
        return MemoryRateLimitStore()
    logger.info(f"Rate limit counters backed by {storage_uri.split('://')[0]} storage.")
    return LimitsRateLimitStore(storage_from_string(storage_uri))


# ──────────────────────────────────────────────────────────────────────────────
# Limiter
# ──────────────────────────────────────────────────────────────────────────────

class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.clock = clock

    def check(
        self,
        request: Request,
        policy: RateLimitPolicy,
        identifier: Optional[str] = None,
    ) -> Optional[JSONResponse]:
        """Count this request; return a 429 response once the window is exhausted."""
        now = self.clock()
        record = self.store.hit(rate_limit_key(request, identifier), policy.window_seconds, now)
        if record.count <= policy.max_requests:
            return None

        retry_after = max(0, math.ceil(record.reset_time - now))
        reset_at = datetime.fromtimestamp(record.reset_time, UTC)
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "message": policy.message,
                "retryAfter": retry_after,
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(policy.max_requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": reset_at.isoformat().replace("+00:00", "Z"),
            },
        )

    def info(self, request: Request, identifier: Optional[str] = None) -> Optional[dict]:
        record = self.store.get(rate_limit_key(request, identifier))
        if record is None:
            return None
        remaining = max(0.0, record.reset_time - self.clock())
        return {
            "count": record.count,
            "reset_time": record.reset_time,
            "remaining": math.ceil(remaining),
        }


RateLimitCheck = Callable[..., Awaitable[Optional[JSONResponse]]]


def rate_limit(policy: RateLimitPolicy) -> RateLimitCheck:
    """
    Bind a policy to the application's limiter.
    Returns `check(request, identifier=None) -> 429 response | None`.
    """
    async def check(request: Request, identifier: Optional[str] = None) -> Optional[JSONResponse]:
        limiter: RateLimiter = request.app.state.rate_limiter
        return limiter.check(request, policy, identifier)

    check.policy = policy  # type: ignore[attr-defined]
    return check


login_rate_limit = rate_limit(RATE_LIMITS["login"])
registro_rate_limit = rate_limit(RATE_LIMITS["registro"])
api_rate_limit = rate_limit(RATE_LIMITS["api"])
checkout_rate_limit = rate_limit(RATE_LIMITS["checkout"])
upload_rate_limit = rate_limit(RATE_LIMITS["upload"])


def get_rate_limit_info(request: Request, identifier: Optional[str] = None) -> Optional[dict]:
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter.info(request, identifier)


# ──────────────────────────────────────────────────────────────────────────────
# Expired-window sweep — background daemon thread
# ──────────────────────────────────────────────────────────────────────────────

class RateLimitSweeper:
    def __init__(
        self,
        store: RateLimitStore,
        interval_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        return self.store.sweep(self.clock())

    def _worker(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                removed = self.run_once()
            except Exception as exc:
                logger.warning(f"Rate limit sweep failed (non-fatal): {exc}")
                continue
            if removed:
                logger.debug(f"Rate limit sweep removed {removed} expired windows.")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._worker,
            daemon=True,
            name="rate-limit-sweeper",
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None
