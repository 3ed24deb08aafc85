from celery import Celery

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "leads_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.leads.scheduler.tasks"],
)
celery_app.conf.beat_schedule = {
    "leads-scheduler-tick": {
        "task": "app.leads.scheduler.tick",
        "schedule": float(settings.scheduler_tick_seconds),
    },
}
celery_app.conf.timezone = "UTC"
