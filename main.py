import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import prometheus_client.parser as parser
import redis.asyncio as redis
import structlog
from celery.result import AsyncResult
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.routing import Match

from cache import ModerationCache, sweep_periodically
from categories import format_feedback
from classifier import ModerationClassifier
from config import (APP_DESCRIPTION, APP_NAME, APP_VERSION, CACHE_SWEEP_INTERVAL, CACHE_TTL, LOG_LEVEL,
                    RATE_LIMIT_SECONDS, RATE_LIMIT_TIMES, REDIS_URL)
from errors import ValidationError
from metrics import ERROR_COUNT, REQUEST_COUNT, REQUEST_LATENCY
from moderation import ModerationEvaluator, ThresholdPolicy, validate_post_text
from publisher import PostingClient
from schemas import CreatePostRequest, ModerateRequest, ModerationDecision
from tasks import DLQ_KEY, celery, publish_post_task

MODERATION_FAILED_MESSAGE = "Content moderation failed. Please try again."


def pretty_json_serializer(event_dict, **kwargs):
    return json.dumps(event_dict, indent=4, sort_keys=True, **kwargs)


structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),  # Timestamp in ISO format
        structlog.processors.JSONRenderer(serializer=pretty_json_serializer)
    ],
    wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, LOG_LEVEL, logging.INFO)),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

# Configure Structured Logging
log = structlog.get_logger()

STARTED_AT = time.monotonic()


# Async Redis Connection
async def get_redis():
    return redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)


def build_evaluator() -> ModerationEvaluator:
    """Wire the classifier, cache and threshold policy from configuration."""
    return ModerationEvaluator(
        classifier=ModerationClassifier(),
        cache=ModerationCache(ttl=CACHE_TTL),
        policy=ThresholdPolicy.from_config(),
    )


def get_evaluator(request: Request) -> ModerationEvaluator:
    return request.app.state.evaluator


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = await get_redis()
    try:
        await FastAPILimiter.init(redis_client)
        log.info("FastAPI Rate Limiter Initialized")
    except Exception as e:
        log.error("Redis Initialization Failed", error=str(e))

    sweeper = asyncio.create_task(sweep_periodically(app.state.evaluator.cache, CACHE_SWEEP_INTERVAL))
    log.info("Moderation Cache Sweeper Started", interval=CACHE_SWEEP_INTERVAL)
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await redis_client.aclose()
        log.info("Redis Connection Closed.")


# FastAPI Application Setup
app = FastAPI(
    docs_url="/",
    title=APP_NAME,
    description=APP_DESCRIPTION,
    version=APP_VERSION,
    lifespan=lifespan
)
app.state.evaluator = build_evaluator()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"]
)

moderate_limiter = RateLimiter(times=RATE_LIMIT_TIMES, seconds=RATE_LIMIT_SECONDS)
post_limiter = RateLimiter(times=RATE_LIMIT_TIMES, seconds=RATE_LIMIT_SECONDS)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})


# **Middleware to Track Request Count And Duration**
@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    method = request.method
    endpoint = request.url.path

    # Normalize Dynamic Routes
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            endpoint = route.path  # Replace with normalized path
            break

    REQUEST_COUNT.labels(method=method, endpoint=endpoint).inc()  # Increment request count
    with REQUEST_LATENCY.labels(method=method, endpoint=endpoint).time():  # Track request duration
        response = await call_next(request)

    return response


def decision_payload(decision: ModerationDecision) -> dict:
    return decision.model_dump(mode="json", by_alias=True)


async def store_pending_status(post_id: str, text: str, celery_task_id: str) -> None:
    """Stores pending status in Redis for quick retrieval."""
    redis_client = await get_redis()
    try:
        await redis_client.set(
            f"status:{post_id}",
            json.dumps({"status": "Processing",
                        "text": text,
                        "celery_task_id": celery_task_id}),
            ex=3600)     # Expires with the Celery result
    finally:
        await redis_client.aclose()


# API Endpoint For Text Moderation
@app.post("/api/v1/moderate", dependencies=[Depends(moderate_limiter)], tags=["POST"])
async def moderate(request: ModerateRequest,
                   evaluator: ModerationEvaluator = Depends(get_evaluator)) -> dict:
    """
    ## **Moderate Text**

    **Description:**

    Runs the text through the moderation classifier and the threshold policy.
    Identical text is answered from the moderation cache for up to an hour.

    ### **Request Body**:
    - **`content`**:  The text to be moderated (1 to 280 characters).

    ### **Response Body**:
    - **`message`**:  Human-readable moderation feedback.

    - **`data`**:  The decision: `isAllowed`, `flaggedCategories`, `confidenceScore` and the `raw` classifier results.
    ---
    """
    text = validate_post_text(request.content)
    decision = await evaluator.evaluate(text)
    return {"success": True,
            "message": format_feedback(decision.flagged_categories, decision.is_allowed),
            "data": decision_payload(decision)}


# API Endpoint For Publishing a Post (Moderation-Gated, Uses Celery)
@app.post("/api/v1/posts", dependencies=[Depends(post_limiter)], tags=["POST"])
async def create_post(request: CreatePostRequest, background_tasks: BackgroundTasks,
                      evaluator: ModerationEvaluator = Depends(get_evaluator)):
    """
    ## **Create Post**

    **Description:**

    Moderates the post and, only if it is allowed, queues it for publishing.

    ### **Request Body**:
    - **`content`**:  The text of the post (1 to 280 characters).

    ### **Response Body**:
    - **`message`**:  Confirmation that the post is queued, or why it was refused.

    - **`id`**:  Unique ID for tracking the publication.
    ---
    """
    text = validate_post_text(request.content)
    decision = await evaluator.evaluate(text)

    if decision.error is not None:
        return JSONResponse(status_code=503,
                            content={"success": False,
                                     "error": MODERATION_FAILED_MESSAGE,
                                     "data": {"moderation": decision_payload(decision)}})

    if not decision.is_allowed:
        return JSONResponse(status_code=400,
                            content={"success": False,
                                     "error": format_feedback(decision.flagged_categories, decision.is_allowed),
                                     "data": {"moderation": decision_payload(decision)}})

    try:
        post_id = str(uuid.uuid4())  # Generate unique ID

        # Send task to Celery
        celery_task = publish_post_task.delay(post_id, text, decision.model_dump(mode="json"))

        # BackgroundTasks for quick Redis status update
        background_tasks.add_task(store_pending_status, post_id, text, celery_task.id)

        log.info("Post Queued For Publishing", post_id=post_id)
        return {"success": True,
                "message": "Post Queued For Publishing",
                "id": post_id,
                "data": {"moderation": decision_payload(decision)}}

    except Exception as e:
        ERROR_COUNT.labels(method="POST", endpoint="/api/v1/posts", exception=type(e).__name__).inc()
        log.error("Error Queueing Post", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


# API Endpoint To Retrieve Failed Publications
@app.get("/api/v1/posts/failed", tags=["GET"])
async def get_failed_posts() -> dict:
    """
    ## **Retrieve Failed Publications**

    **Description:**

    Fetches all posts stored in the Dead Letter Queue (DLQ) in Redis.
    ---
    """
    redis_client = await get_redis()
    try:
        failed_posts = await redis_client.lrange(DLQ_KEY, 0, -1)

        if not failed_posts:
            return {"status": "Not Found", "message": "No Failed Posts in DLQ"}

        return {"failed_posts": [json.loads(post) for post in failed_posts]}

    except Exception as e:
        ERROR_COUNT.labels(method="GET", endpoint="/api/v1/posts/failed", exception=type(e).__name__).inc()
        raise HTTPException(status_code=500, detail=f"Error fetching failed posts: {str(e)}")
    finally:
        await redis_client.aclose()


# API Endpoint To Clear Failed Publications
@app.delete("/api/v1/posts/failed/clear", tags=["DELETE"])
async def clear_failed_posts() -> dict:
    """
    ## **Clear All Failed Publications**

    **Description:**

    Deletes all posts from the Dead Letter Queue (DLQ) in Redis.
    ---
    """
    redis_client = await get_redis()
    try:
        failed_posts = await redis_client.lrange(DLQ_KEY, 0, -1)

        if not failed_posts:
            return {"status": "Not Found", "message": "No Failed Posts in DLQ to Clear"}

        await redis_client.delete(DLQ_KEY)
        return {"status": "success", "message": "All Failed Posts Cleared From DLQ"}

    except Exception as e:
        ERROR_COUNT.labels(method="DELETE", endpoint="/api/v1/posts/failed/clear", exception=type(e).__name__).inc()
        raise HTTPException(status_code=500, detail=f"Error clearing failed posts: {str(e)}")
    finally:
        await redis_client.aclose()


# API Endpoint To Retrieve Publication Status
@app.get("/api/v1/posts/{id}", tags=["GET"])
async def get_post_status(id: str) -> dict:
    """
    ## **Retrieve Publication Status**

    **Description:**

    Reports whether a queued post is still being published, was published, or failed.
    ---
    """
    redis_client = await get_redis()
    try:
        status = await redis_client.get(f"status:{id}")
    finally:
        await redis_client.aclose()

    if not status:
        raise HTTPException(status_code=404, detail="Post Not Found Or Status Expired")

    status_data = json.loads(status)
    task_result = AsyncResult(status_data["celery_task_id"], app=celery)

    if task_result.state in ["PENDING", "STARTED", "RETRY"]:
        return {"id": id,
                "status": task_result.state,
                "message": f"Publication Task is Currently {task_result.state} in Celery."}

    if task_result.state == "SUCCESS":
        return {"id": id, "status": "SUCCESS", "result": task_result.result}

    return {"id": id, "status": task_result.state, "message": "Publication Task Failed"}


@app.get("/stats", response_class=PlainTextResponse, tags=["MONITORING"])
async def metrics() -> PlainTextResponse:
    """Returns Prometheus Metrics in Plain Text."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/metrics/json", tags=["MONITORING"])
async def get_metrics_json() -> dict:
    """
    Returns Prometheus Metrics in JSON Format.
    """
    try:
        # Generate raw Prometheus metrics
        raw_metrics = generate_latest()

        # Parse metrics into JSON format
        parsed_metrics = {}
        for metric in parser.text_string_to_metric_families(raw_metrics.decode("utf-8")):
            parsed_metrics[metric.name] = {
                "type": metric.type,
                "help": metric.documentation,
                "values": [
                    {
                        "labels": sample.labels,
                        "value": sample.value
                    }
                    for sample in metric.samples
                ]
            }

        return parsed_metrics
    except Exception as e:
        return {"status": "error", "message": str(e)}


async def check_redis() -> dict:
    """Check if Redis is reachable"""
    try:
        redis_client = await get_redis()
        pong = await redis_client.ping()
        await redis_client.aclose()
        return {"redis": "connected"} if pong else {"redis": "error"}
    except Exception as e:
        return {"redis": "error", "details": str(e)}


async def check_celery() -> dict:
    """Check if Celery workers answer a ping"""
    try:
        replies = await asyncio.to_thread(celery.control.ping, timeout=1.0)
        return {"celery": "running"} if replies else {"celery": "no workers"}
    except Exception as e:
        return {"celery": "error", "details": str(e)}


@app.get("/api/v1/health", tags=["MONITORING"])
async def health_check(cleanup: bool = Query(False),
                       evaluator: ModerationEvaluator = Depends(get_evaluator)) -> dict:
    """
    ## **Health Check Endpoint**

    **Checks API, Moderation Cache, Redis, and Celery Worker Status.**

    Pass `cleanup=true` to sweep expired moderation cache entries first.
    """
    cleanup_results = None
    if cleanup:
        cleanup_results = {"cache_evicted": evaluator.cache.sweep(),
                           "timestamp": datetime.now(timezone.utc).isoformat()}

    redis_status = await check_redis()
    celery_status = await check_celery()
    classifier_configured = evaluator.classifier.configured
    healthy = classifier_configured and redis_status.get("redis") == "connected"

    health = {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "application": {"name": APP_NAME, "version": APP_VERSION},
        "moderation": {"cache": evaluator.cache.stats(),
                       "model": evaluator.classifier.model,
                       "mock_server": evaluator.classifier.use_mock_server},
        "services": {"classifier": {"configured": classifier_configured},
                     "posting": {"configured": PostingClient().configured},
                     "redis": redis_status,
                     "celery": celery_status},
        "uptime": int(time.monotonic() - STARTED_AT),
    }
    if cleanup_results is not None:
        health["cleanup"] = cleanup_results
    return health


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
