import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import RETRY_BASE_DELAY, RETRY_MAX_JITTER
from errors import PublishBlockedError, PublishError
from schemas import ModerationDecision
from tasks import (DLQ_KEY, DLQ_LOCK_KEY, _async_retry_failed_publications, publish_post_task, push_to_dlq,
                   retry_countdown, retry_failed_publications)

ALLOWED = ModerationDecision(is_allowed=True, confidence_score=0.01).model_dump(mode="json")


def test_publish_post_task_success() -> None:
    """Test Publishing a Moderated Post"""
    with patch("tasks.publish_post", new_callable=AsyncMock, return_value="1780") as mock_publish:
        result = publish_post_task("post-1", "Hello", ALLOWED)

    assert result == {"status": "published", "id": "post-1", "remote_id": "1780"}
    text, decision = mock_publish.call_args.args
    assert text == "Hello"
    assert decision.is_allowed is True


def test_publish_post_task_blocked() -> None:
    """Test a Blocked Post is Neither Retried Nor Sent to the DLQ"""
    with patch("tasks.publish_post", new_callable=AsyncMock,
               side_effect=PublishBlockedError("Content flagged for: Harassment. Please revise your post.")), \
         patch("tasks.run_async_in_executor") as mock_executor:
        result = publish_post_task("post-2", "I hate everyone", ALLOWED)

    assert result["status"] == "blocked"
    mock_executor.assert_not_called()


def test_publish_post_task_permanent_failure_goes_to_dlq() -> None:
    """Test Non-Transient Failure Pushes The Post to the DLQ"""
    with patch("tasks.publish_post", new_callable=AsyncMock,
               side_effect=PublishError("Posting service returned HTTP 403", status_code=403)), \
         patch("tasks.run_async_in_executor") as mock_executor:
        result = publish_post_task("post-3", "Hello", ALLOWED)

    assert result == {"status": "failed", "id": "post-3", "reason": "Posting service returned HTTP 403"}
    mock_executor.assert_called_once_with(push_to_dlq, "post-3", "Hello", ALLOWED,
                                          "Posting service returned HTTP 403")


def test_publish_post_task_transient_failure_is_retried() -> None:
    """Test Transient Failure Triggers a Celery Retry (Raised Directly Outside a Worker)"""
    with patch("tasks.publish_post", new_callable=AsyncMock,
               side_effect=PublishError("Posting service timed out", transient=True)), \
         patch("tasks.run_async_in_executor") as mock_executor:
        with pytest.raises(PublishError):
            publish_post_task("post-4", "Hello", ALLOWED)

    mock_executor.assert_not_called()


def test_retry_countdown_backs_off() -> None:
    first = retry_countdown(0)
    third = retry_countdown(2)

    assert RETRY_BASE_DELAY <= first <= RETRY_BASE_DELAY + RETRY_MAX_JITTER
    assert 4 * RETRY_BASE_DELAY <= third <= 4 * RETRY_BASE_DELAY + RETRY_MAX_JITTER


@pytest.mark.asyncio
async def test_push_to_dlq(fake_redis) -> None:
    """Test Failed Publication is Stored in Redis"""
    with patch("tasks.get_redis", new_callable=AsyncMock, return_value=fake_redis):
        await push_to_dlq("post-5", "Hello", ALLOWED, "HTTP 403")

    entry = json.loads(fake_redis.lists[DLQ_KEY][0])
    assert entry == {"post_id": "post-5", "text": "Hello", "decision": ALLOWED, "error": "HTTP 403"}
    assert fake_redis.closed is True


@pytest.mark.asyncio
async def test_push_to_dlq_redis_failure_is_logged(fake_redis) -> None:
    fake_redis.rpush = AsyncMock(side_effect=ConnectionError("redis down"))

    with patch("tasks.get_redis", new_callable=AsyncMock, return_value=fake_redis):
        await push_to_dlq("post-6", "Hello", ALLOWED, "HTTP 403")

    assert fake_redis.closed is True


@pytest.mark.asyncio
async def test_retry_failed_publications_requeues_entries(fake_redis) -> None:
    """Test DLQ Entries Are Requeued And Malformed Ones Dropped"""
    good = {"post_id": "post-7", "text": "Hello", "decision": ALLOWED, "error": "HTTP 503"}
    await fake_redis.rpush(DLQ_KEY, json.dumps(good), json.dumps({"text": "no id"}))

    mock_task = MagicMock()
    with patch("tasks.get_redis", new_callable=AsyncMock, return_value=fake_redis), \
         patch("tasks.publish_post_task", mock_task):
        requeued = await _async_retry_failed_publications()

    assert requeued == 1
    mock_task.delay.assert_called_once_with("post-7", "Hello", ALLOWED)
    assert fake_redis.lists.get(DLQ_KEY) is None
    assert DLQ_LOCK_KEY not in fake_redis.values


@pytest.mark.asyncio
async def test_retry_failed_publications_skips_when_locked(fake_redis) -> None:
    await fake_redis.set(DLQ_LOCK_KEY, "1")
    await fake_redis.rpush(DLQ_KEY, json.dumps({"post_id": "post-8", "text": "Hi", "decision": ALLOWED}))

    mock_task = MagicMock()
    with patch("tasks.get_redis", new_callable=AsyncMock, return_value=fake_redis), \
         patch("tasks.publish_post_task", mock_task):
        requeued = await _async_retry_failed_publications()

    assert requeued == 0
    mock_task.delay.assert_not_called()
    assert len(fake_redis.lists[DLQ_KEY]) == 1


def test_retry_failed_publications_task_runs_in_executor() -> None:
    with patch("tasks.run_async_in_executor") as mock_executor:
        retry_failed_publications()

    mock_executor.assert_called_once_with(_async_retry_failed_publications)
