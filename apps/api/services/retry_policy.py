"""Shared timeout + exponential backoff policy for embedding and store calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
import openai
from sqlalchemy.exc import DBAPIError, OperationalError

from config import settings
from services.brain_errors import PermanentServiceError, TransientServiceError, UpstreamServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    asyncio.TimeoutError,
    TransientServiceError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    httpx.TransportError,
    OperationalError,
)


def is_transient(exc: BaseException) -> bool:
    """Classify a failure as retryable."""
    if isinstance(exc, PermanentServiceError):
        return False
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


class RetryPolicy:
    """Run an awaitable factory with a per-attempt timeout and bounded retries."""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        timeout: Optional[float] = 20.0,
        service: str = "embedding",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max(int(max_retries), 0)
        self.base_delay = max(float(base_delay), 0.0)
        self.max_delay = max(float(max_delay), self.base_delay)
        self.timeout = timeout
        self.service = service
        self._sleep = sleep

    def backoff_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    async def call(self, factory: Callable[[], Awaitable[T]], *, operation: str = "call") -> T:
        """Await ``factory()`` until it succeeds, fails permanently, or retries run out."""
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            try:
                if self.timeout:
                    return await asyncio.wait_for(factory(), timeout=self.timeout)
                return await factory()
            except UpstreamServiceError:
                raise
            except Exception as exc:
                if not is_transient(exc):
                    raise UpstreamServiceError(
                        f"{self.service} {operation} failed: {exc}",
                        retryable=False,
                        service=self.service,
                    ) from exc
                last_error = exc
                if attempt >= self.max_retries:
                    break
                wait_time = self.backoff_for(attempt)
                logger.warning(
                    f"{self.service} {operation} failed ({type(exc).__name__}: {exc}), "
                    f"retrying in {wait_time:.2f}s (attempt {attempt + 1}/{self.max_retries})"
                )
                await self._sleep(wait_time)

        logger.error(f"{self.service} {operation} exhausted retries: {last_error}")
        raise UpstreamServiceError(
            f"{self.service} {operation} failed after {self.max_retries + 1} attempts: {last_error}",
            retryable=True,
            service=self.service,
        ) from last_error


def embedding_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.EMBEDDING_MAX_RETRIES,
        base_delay=settings.EMBEDDING_BACKOFF_BASE_SECONDS,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        service="embedding",
    )


def store_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay=0.2, timeout=None, service="vector_store")
