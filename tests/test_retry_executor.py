import pytest

from modules.persistence.gateway import ErrorKind, GatewayError
from modules.tracking.retry import RetryExecutor, is_transient
from tests.support import deadlock, rejected


class Script:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_first_attempt_success_records_one_attempt(fake_sleep) -> None:
    op = Script("done")
    outcome = await RetryExecutor(sleep=fake_sleep).run(op)
    assert outcome.succeeded
    assert outcome.value == "done"
    assert outcome.attempts == 1
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_two_deadlocks_then_success_waits_twice_with_growing_backoff(fake_sleep) -> None:
    op = Script(deadlock(), deadlock(), "done")
    outcome = await RetryExecutor(sleep=fake_sleep).run(op, label="42")
    assert outcome.succeeded
    assert outcome.attempts == 3
    assert op.calls == 3

    first, second = fake_sleep.delays
    assert 0.1 <= first <= 0.15
    assert 0.2 <= second <= 0.25
    assert second > first


@pytest.mark.asyncio
async def test_deadlock_on_every_attempt_exhausts_after_three(fake_sleep) -> None:
    op = Script(deadlock(), deadlock(), deadlock("still deadlocked"), "never reached")
    outcome = await RetryExecutor(sleep=fake_sleep).run(op)
    assert not outcome.succeeded
    assert outcome.attempts == 3
    assert isinstance(outcome.error, GatewayError)
    assert str(outcome.error) == "still deadlocked"
    assert op.calls == 3
    # No wait after the final failure
    assert len(fake_sleep.delays) == 2


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried(fake_sleep) -> None:
    op = Script(rejected(), "never reached")
    outcome = await RetryExecutor(sleep=fake_sleep).run(op)
    assert not outcome.succeeded
    assert outcome.attempts == 1
    assert outcome.error.kind is ErrorKind.REJECTED
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_unexpected_exception_is_captured_without_retry(fake_sleep) -> None:
    op = Script(RuntimeError("driver exploded"))
    outcome = await RetryExecutor(sleep=fake_sleep).run(op)
    assert outcome.attempts == 1
    assert isinstance(outcome.error, RuntimeError)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_custom_attempt_cap_and_zero_jitter(fake_sleep) -> None:
    op = Script(deadlock(), deadlock(), deadlock(), deadlock(), "done")
    executor = RetryExecutor(max_attempts=5, base_delay_s=0.01, jitter_s=0.0, sleep=fake_sleep)
    outcome = await executor.run(op)
    assert outcome.succeeded
    assert outcome.attempts == 5
    assert fake_sleep.delays == pytest.approx([0.01, 0.02, 0.04, 0.08])


def test_is_transient_only_for_contention() -> None:
    assert is_transient(deadlock())
    assert not is_transient(rejected())
    assert not is_transient(GatewayError("boom", kind=ErrorKind.OTHER))
    assert not is_transient(TimeoutError())
