"""
Retry policy for remote I/O.

Every SSH, SFTP, source SQL and object storage call goes through
``call_with_retry`` so backoff behaviour is uniform and testable without
touching the network.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import asyncssh
from botocore.exceptions import ConnectionError as BotoConnectionError
from sqlalchemy.exc import DBAPIError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from backupwiz.core.config import get_settings
from backupwiz.core.exceptions import ConnectivityError, RecordMappingError, SourceQueryError

logger = logging.getLogger(__name__)

_TRANSIENT_OS_ERRORS = (
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
    asyncio.TimeoutError,
    TimeoutError,
)


def is_transient_error(error: BaseException) -> bool:
    """Return True when a single failed call is worth repeating in-process.

    Tunnel/database unavailability, authentication failures and query or
    mapping errors are not; those wait for the next scheduled run.
    """
    if isinstance(error, (ConnectivityError, SourceQueryError, RecordMappingError)):
        return False
    if isinstance(error, asyncssh.PermissionDenied):
        return False
    if isinstance(error, asyncssh.ConnectionLost):
        return True
    if isinstance(error, DBAPIError):
        return bool(error.connection_invalidated)
    if isinstance(error, BotoConnectionError):
        return True
    return isinstance(error, _TRANSIENT_OS_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    initial_wait: float = 1.0
    max_wait: float = 20.0
    jitter: float = 1.0
    predicate: Callable[[BaseException], bool] = field(default=is_transient_error)

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            attempts=settings.RETRY_ATTEMPTS,
            initial_wait=settings.RETRY_INITIAL_WAIT_SECONDS,
            max_wait=settings.RETRY_MAX_WAIT_SECONDS,
            jitter=settings.RETRY_JITTER_SECONDS,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.attempts)),
            wait=wait_exponential_jitter(initial=self.initial_wait, max=self.max_wait, jitter=self.jitter),
            retry=retry_if_exception(self.predicate),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


async def call_with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> Any:
    """Await ``fn(*args, **kwargs)``, retrying transient failures with exponential backoff and jitter."""
    policy = policy or RetryPolicy.from_settings()
    async for attempt in policy.retrying():
        with attempt:
            return await fn(*args, **kwargs)
