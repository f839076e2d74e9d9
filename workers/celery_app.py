"""
Celery Application

Redis is both broker and result backend. Only the security sweeps run
in the background; they are routed to their own queue so a long chain
verification never delays other work.
"""

import os

from celery import Celery
from celery.schedules import crontab

from backend.config import get_settings

settings = get_settings()

app = Celery(
    "appraisely",
    broker=settings.redis_url,
    backend=os.getenv("CELERY_RESULT_BACKEND", settings.redis_url),
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Sweeps are idempotent, so redelivery after a worker crash is safe
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,
    task_routes={
        "workers.tasks.security_tasks.*": {"queue": "security"},
    },
    task_default_queue="default",
    worker_concurrency=2,
)

app.conf.beat_schedule = {
    "verify-tenant-isolation": {
        "task": "workers.tasks.security_tasks.verify_all_organizations",
        "schedule": crontab(hour=2, minute=0),
        "options": {"queue": "security"},
    },
    "verify-audit-chains": {
        "task": "workers.tasks.security_tasks.verify_all_audit_chains",
        "schedule": crontab(hour=3, minute=0),
        "options": {"queue": "security"},
    },
}

if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"appraisely-worker@{settings.app_version}",
        traces_sample_rate=0.1,
        integrations=[CeleryIntegration()],
    )

app.autodiscover_tasks(["workers.tasks"], related_name="security_tasks")
