from celery import Celery
from celery.signals import after_setup_logger

from app.core.config import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CELERY_EAGER,
    SCAN_TASK_TIME_LIMIT,
)

celery = Celery(
    "facescan",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["app.scans.tasks"],
)

celery.conf.task_always_eager = CELERY_EAGER
celery.conf.task_eager_propagates = True

# at-least-once: ack after the task body finishes, redeliver if the worker dies
celery.conf.task_acks_late = True
celery.conf.task_reject_on_worker_lost = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.task_track_started = True
celery.conf.broker_connection_retry_on_startup = True

# an unacked message becomes visible again after this long (redis/sqs brokers)
celery.conf.broker_transport_options = {"visibility_timeout": SCAN_TASK_TIME_LIMIT + 60}


@after_setup_logger.connect
def _setup_worker_logging(logger=None, **kwargs):
    from app.core.logging import setup_logging

    setup_logging()
