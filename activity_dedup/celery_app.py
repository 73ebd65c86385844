from celery import Celery
from celery.signals import worker_process_init

from activity_dedup.config.settings import settings
from activity_dedup.core.logger import setup_logger

celery_app = Celery(
    "activity_dedup",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["activity_dedup.workers.tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
)


@worker_process_init.connect
def _configure_worker_logging(**_kwargs) -> None:
    setup_logger(level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)
