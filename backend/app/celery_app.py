"""
Celery Konfiguration für Background Tasks
"""
from celery import Celery
from celery.schedules import crontab
from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "minga-greens",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.tasks.lifecycle_tasks",
        "app.tasks.planning_tasks",
    ]
)

# Celery Konfiguration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Berlin",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 Minuten max
    worker_prefetch_multiplier=1,
)

# Scheduled Tasks (Celery Beat)
celery_app.conf.beat_schedule = {
    # Stündliche Prüfung der Erntereife
    "hourly-crop-readiness-check": {
        "task": "app.tasks.lifecycle_tasks.check_crop_readiness",
        "schedule": crontab(minute=0),
    },
    # Domain Events zustellen (alle 5 Minuten)
    "dispatch-domain-events": {
        "task": "app.tasks.lifecycle_tasks.dispatch_domain_events",
        "schedule": crontab(minute="*/5"),
    },
    # Tägliche Prüfung nicht freigegebener Pläne (6:00)
    "daily-overdue-plan-check": {
        "task": "app.tasks.planning_tasks.check_overdue_plans",
        "schedule": crontab(hour=6, minute=0),
    },
}
