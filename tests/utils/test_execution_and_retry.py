import threading
import time

import pytest

from kubestrap.errors import OperationCancelled, RemoteConnectionError, WaitTimeout
from kubestrap.utils.execution import ExecutionContext
from kubestrap.utils.retry import RetryError, call_with_retry


def test_background_has_no_deadline():
    ctx = ExecutionContext.background()
    assert ctx.remaining() is None
    assert not ctx.expired
    ctx.check()


def test_child_takes_earlier_deadline_and_shares_cancel():
    parent = ExecutionContext.background().with_timeout(0.5)
    child = parent.child(timeout=60)

    assert child.deadline == parent.deadline

    child.cancel()
    assert parent.cancelled


def test_check_raises_on_expiry():
    ctx = ExecutionContext.background().with_timeout(0)
    with pytest.raises(OperationCancelled) as exc:
        ctx.check()
    assert exc.value.reason == "deadline exceeded"


def test_sleep_wakes_on_cancel():
    ctx = ExecutionContext.background()
    threading.Timer(0.05, ctx.cancel).start()

    start = time.monotonic()
    assert ctx.sleep(5) is False
    assert time.monotonic() - start < 2


def test_bound_clamps_to_remaining():
    ctx = ExecutionContext.background().with_timeout(1)
    assert ctx.bound(30) <= 1
    assert ExecutionContext.background().bound(30) == 30


# ----------------- retry -----------------

def test_retry_succeeds_after_transient_failures():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RemoteConnectionError("refused")
        return "ok"

    result = call_with_retry(
        flaky, retries=5, delay=0, ctx=ExecutionContext.background(), retry_on=(RemoteConnectionError,)
    )

    assert result == "ok"
    assert len(calls) == 3


def test_retry_gives_up_with_cause():
    seen = []

    def always_fails():
        raise RemoteConnectionError("refused")

    with pytest.raises(RetryError) as exc:
        call_with_retry(
            always_fails,
            retries=2,
            delay=0,
            ctx=ExecutionContext.background(),
            on_retry=lambda attempt, e: seen.append(attempt),
        )

    assert seen == [1, 2]
    assert isinstance(exc.value.__cause__, RemoteConnectionError)


def test_retry_does_not_retry_other_errors():
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        call_with_retry(
            broken, retries=5, delay=0, ctx=ExecutionContext.background(), retry_on=(RemoteConnectionError,)
        )
    assert len(calls) == 1


def test_retry_stops_when_cancelled():
    ctx = ExecutionContext.background()
    ctx.cancel()
    with pytest.raises(OperationCancelled):
        call_with_retry(lambda: "never", retries=3, delay=0, ctx=ctx)


def test_retry_reraise_keeps_last_error_type():
    def always_fails():
        raise RemoteConnectionError("refused", host="10.0.0.1")

    with pytest.raises(RemoteConnectionError) as exc:
        call_with_retry(always_fails, retries=2, delay=0, ctx=ExecutionContext.background(), reraise=True)
    assert exc.value.host == "10.0.0.1"


def test_retry_deadline_during_backoff_is_a_timeout():
    ctx = ExecutionContext.background().with_timeout(0.05)

    def always_fails():
        raise RemoteConnectionError("refused")

    with pytest.raises(WaitTimeout) as exc:
        call_with_retry(always_fails, retries=5, delay=10, ctx=ctx, name="connect 10.0.0.1")
    assert "connect 10.0.0.1" in str(exc.value)
    assert isinstance(exc.value.__cause__, RemoteConnectionError)


def test_retry_cancel_during_backoff():
    ctx = ExecutionContext.background()
    threading.Timer(0.05, ctx.cancel).start()

    def always_fails():
        raise RemoteConnectionError("refused")

    with pytest.raises(OperationCancelled):
        call_with_retry(always_fails, retries=5, delay=5, ctx=ctx)
