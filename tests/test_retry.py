import pytest

from errors import ClassifierError, ClassifierErrorKind, PublishError
from retry import backoff_delay, is_transient, with_retry


class Flaky:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, errors, result="ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def transient_error() -> ClassifierError:
    return ClassifierError("connection reset", ClassifierErrorKind.NETWORK)


def test_is_transient() -> None:
    assert is_transient(transient_error())
    assert is_transient(PublishError("busy", transient=True))
    assert not is_transient(ClassifierError("bad key", ClassifierErrorKind.AUTHENTICATION))
    assert not is_transient(ValueError("boom"))


def test_backoff_delay_grows_exponentially() -> None:
    assert backoff_delay(1, base_delay=1.0, max_jitter=0) == 1.0
    assert backoff_delay(2, base_delay=1.0, max_jitter=0) == 2.0
    assert backoff_delay(3, base_delay=1.0, max_jitter=0) == 4.0


def test_backoff_delay_jitter_is_bounded() -> None:
    for _ in range(100):
        delay = backoff_delay(2, base_delay=0.5, max_jitter=0.25)
        assert 1.0 <= delay <= 1.25


@pytest.mark.asyncio
async def test_returns_first_success_without_sleeping() -> None:
    operation = Flaky([])
    sleep = RecordingSleep()

    assert await with_retry(operation, attempts=3, sleep=sleep) == "ok"
    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retries_transient_errors_until_success() -> None:
    operation = Flaky([transient_error(), transient_error()])
    sleep = RecordingSleep()

    result = await with_retry(operation, attempts=3, base_delay=1.0, max_jitter=0, sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_raises_last_error_when_attempts_exhausted() -> None:
    last = ClassifierError("still down", ClassifierErrorKind.UPSTREAM)
    operation = Flaky([transient_error(), last])

    with pytest.raises(ClassifierError) as exc_info:
        await with_retry(operation, attempts=2, base_delay=0, max_jitter=0, sleep=RecordingSleep())

    assert exc_info.value is last
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried() -> None:
    operation = Flaky([ClassifierError("bad payload", ClassifierErrorKind.MALFORMED_RESPONSE)])
    sleep = RecordingSleep()

    with pytest.raises(ClassifierError):
        await with_retry(operation, attempts=5, sleep=sleep)

    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_custom_retry_predicate() -> None:
    operation = Flaky([KeyError("missing")])

    result = await with_retry(operation, attempts=2, base_delay=0, max_jitter=0,
                              is_retryable=lambda e: isinstance(e, KeyError), sleep=RecordingSleep())

    assert result == "ok"


@pytest.mark.asyncio
async def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        await with_retry(Flaky([]), attempts=0)
