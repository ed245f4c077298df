from celery import Celery
from celery.schedules import crontab

from config import REDIS_URL

# Initialize Celery
celery = Celery(
    "celery_worker",
    backend=REDIS_URL,  # Stores task results
    broker=REDIS_URL,   # Message queue
    include=["tasks"],
)

celery.conf.update(
    result_expires=3600,  # Keep results for 1 hour
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    broker_connection_retry_on_startup=True
)

celery.conf.beat_schedule = {
    "retry_failed_publications": {
        "task": "celery_worker.retry_failed_publications",
        "schedule": crontab(minute=0, hour="*"),  # Runs every hour
    }
}
