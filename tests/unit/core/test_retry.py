# tests/unit/core/test_retry.py
import pytest
from unittest.mock import AsyncMock

import asyncssh

from backupwiz.core.exceptions import (
    RecordMappingError,
    SourceDatabaseUnavailableError,
    SourceQueryError,
    TunnelUnavailableError,
)
from backupwiz.core.retry import RetryPolicy, call_with_retry, is_transient_error

FAST = RetryPolicy(attempts=3, initial_wait=0, max_wait=0, jitter=0)


"""
1. Transient classification
"""

@pytest.mark.parametrize(
    "error, expected",
    [
        (ConnectionResetError("reset"), True),
        (BrokenPipeError(), True),
        (TimeoutError(), True),
        (asyncssh.ConnectionLost("gone"), True),
        (asyncssh.PermissionDenied("nope"), False),
        (TunnelUnavailableError("refused"), False),
        (SourceDatabaseUnavailableError("down"), False),
        (SourceQueryError("bad sql"), False),
        (RecordMappingError("bad row"), False),
        (ValueError("bug"), False),
    ],
)
def test_is_transient_error(error, expected):
    assert is_transient_error(error) is expected


"""
2. call_with_retry
"""

@pytest.mark.asyncio
async def test_transient_failure_is_retried_until_success():
    fn = AsyncMock(side_effect=[ConnectionResetError("reset"), ConnectionResetError("reset"), "ok"])

    result = await call_with_retry(fn, "a", policy=FAST, flag=True)

    assert result == "ok"
    assert fn.await_count == 3
    fn.assert_awaited_with("a", flag=True)


@pytest.mark.asyncio
async def test_attempts_are_bounded_and_last_error_reraised():
    fn = AsyncMock(side_effect=ConnectionResetError("reset"))

    with pytest.raises(ConnectionResetError):
        await call_with_retry(fn, policy=FAST)

    assert fn.await_count == 3


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    fn = AsyncMock(side_effect=SourceQueryError("syntax error"))

    with pytest.raises(SourceQueryError):
        await call_with_retry(fn, policy=FAST)

    assert fn.await_count == 1


@pytest.mark.asyncio
async def test_zero_attempts_still_calls_once():
    fn = AsyncMock(side_effect=ConnectionResetError("reset"))

    with pytest.raises(ConnectionResetError):
        await call_with_retry(fn, policy=RetryPolicy(attempts=0, initial_wait=0, max_wait=0, jitter=0))

    assert fn.await_count == 1


def test_policy_from_settings(settings):
    policy = RetryPolicy.from_settings(settings)
    assert policy.attempts == 1
    assert policy.initial_wait == 0
    assert policy.predicate is is_transient_error
