import asyncio
import concurrent.futures
import json

import redis.asyncio as redis
import structlog
from asgiref.sync import async_to_sync
from celery.signals import worker_shutdown

from celery_worker import celery
from config import REDIS_URL, RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_JITTER
from errors import PublishBlockedError, PublishError
from publisher import PostingClient
from retry import backoff_delay
from schemas import ModerationDecision

log = structlog.get_logger()

DLQ_KEY = "dlq:publish_failed"
DLQ_LOCK_KEY = "dlq:retry_lock"


# Async Redis Connection
async def get_redis():
    return redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)


# Global ThreadPoolExecutor
executor = concurrent.futures.ThreadPoolExecutor(max_workers=5)


@worker_shutdown.connect
def shutdown_executor(*args, **kwargs):
    """Ensures the ThreadPoolExecutor is Shut Down When Celery Stops."""
    log.info("Shutting Down Celery Worker & ThreadPoolExecutor...")
    executor.shutdown(wait=True)
    log.info("Shutdown Complete.")


def run_async_in_executor(async_func, *args):
    return executor.submit(lambda: asyncio.run(async_func(*args)))


def retry_countdown(retries: int) -> float:
    """Seconds to wait before retry number ``retries + 1``."""
    return backoff_delay(retries + 1, RETRY_BASE_DELAY, RETRY_MAX_JITTER)


async def publish_post(text: str, decision: ModerationDecision) -> str:
    return await PostingClient().publish(text, decision)


@celery.task(name="celery_worker.publish_post_task", bind=True, max_retries=RETRY_ATTEMPTS)
def publish_post_task(self, post_id: str, text: str, decision: dict) -> dict:
    """
    Publishes a Moderated Post (Celery Task).
    Transient Failures Are Retried With Exponential Backoff, Others Go To The DLQ.
    """
    moderation = ModerationDecision.model_validate(decision)
    try:
        remote_id = async_to_sync(publish_post)(text, moderation)

    except PublishBlockedError as e:
        log.warning("Publish Refused By Moderation", post_id=post_id, reason=str(e))
        return {"status": "blocked", "id": post_id, "reason": str(e)}

    except PublishError as e:
        log.error("Publish Task Failed", post_id=post_id, error=str(e), transient=e.transient)

        if not e.transient or self.request.retries >= self.max_retries:
            log.warning("Post Moved To DLQ", post_id=post_id, retries=self.request.retries)
            run_async_in_executor(push_to_dlq, post_id, text, decision, str(e))
            return {"status": "failed", "id": post_id, "reason": str(e)}

        raise self.retry(exc=e, countdown=retry_countdown(self.request.retries))

    log.info("Post Published To Posting Service", post_id=post_id, remote_id=remote_id)
    return {"status": "published", "id": post_id, "remote_id": remote_id}


async def push_to_dlq(post_id, text, decision, error) -> None:
    """
    Push Failed Publications to Dead Letter Queue (DLQ) in Redis.
    """
    redis_client = await get_redis()
    try:
        failed_task = {"post_id": post_id, "text": text, "decision": decision, "error": error}
        await redis_client.rpush(DLQ_KEY, json.dumps(failed_task))
        log.warning("Post Added to DLQ", post_id=post_id, error=error)
    except Exception as e:
        log.error("Failed to Push Post to DLQ", post_id=post_id, error=str(e))
    finally:
        await redis_client.aclose()


@celery.task(name="celery_worker.retry_failed_publications")
def retry_failed_publications() -> None:
    """
    Celery Task to Retry All Failed Publications From DLQ.
    """
    run_async_in_executor(_async_retry_failed_publications)


async def _async_retry_failed_publications() -> int:
    """
    Requeues Every Post in The DLQ.
    Uses a Redis Lock to Prevent Multiple Instances From Running Simultaneously.
    """
    redis_client = await get_redis()

    lock = await redis_client.set(DLQ_LOCK_KEY, "1", nx=True, ex=60)
    if not lock:
        log.info("Retry Task Already Running. Skipping...")
        await redis_client.aclose()
        return 0

    requeued = 0
    try:
        while True:
            failed_task = await redis_client.lpop(DLQ_KEY)
            if not failed_task:
                break

            task_data = json.loads(failed_task)
            if not task_data.get("post_id") or not task_data.get("decision"):
                log.warning("Malformed DLQ Entry, Skipping.", entry=task_data)
                continue

            log.info("Retrying Failed Publication", post_id=task_data["post_id"])
            publish_post_task.delay(task_data["post_id"], task_data["text"], task_data["decision"])
            requeued += 1
    finally:
        await redis_client.delete(DLQ_LOCK_KEY)  # Release lock
        await redis_client.aclose()

    return requeued
