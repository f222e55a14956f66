"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Run a worker with:
    celery -A tableside.celery_worker worker --loglevel=info
"""

from celery import Celery

from tableside.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'tableside_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['tableside.tasks']  # Module containing our tasks
)

celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Inline execution (tests, single-process development)
    task_always_eager=settings.celery_task_always_eager,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,

    # Result settings
    result_expires=3600,

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
