from celery import Celery
from celery.signals import after_setup_logger
from config.settings import settings
from utils.logging_config import configure_logging

app = Celery(
    'flocktrack',
    broker=settings.REDIS_URL or 'redis://localhost:6379/0',
    backend=settings.REDIS_URL or 'redis://localhost:6379/0',
)

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.APP_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minute hard limit
    task_soft_time_limit=25 * 60,  # 25 minute soft timeout
    beat_schedule={
        'daily-feed-update': {
            'task': 'workers.tasks.update_feed_task',
            'schedule': 6 * 60 * 60,  # every 6 hours; the age checkpoint makes reruns no-ops
        },
    },
)


@after_setup_logger.connect
def _setup_structured_logging(logger=None, loglevel=None, **kwargs):
    configure_logging(level=settings.LOG_LEVEL)


app.autodiscover_tasks(['workers'])
