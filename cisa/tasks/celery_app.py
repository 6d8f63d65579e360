from celery import Celery

from cisa.core.config import get_settings

settings = get_settings()

celery = Celery(
    "cisa",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["cisa.tasks.tasks"],
)
celery.conf.update(
    timezone="UTC",
    task_track_started=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    beat_schedule={
        "notifications-dispatch": {
            "task": "notifications.dispatch",
            "schedule": 60,
        }
    },
)
