from celery import Celery
from core.config import settings

# Use Redis for production/development
broker_url = settings.REDIS_URL
backend_url = settings.REDIS_URL

# Create Celery app
celery_app = Celery(
    "grocer_orders",
    broker=broker_url,
    backend=backend_url,
    include=["tasks.email_tasks"]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_always_eager=settings.TESTING,
    task_eager_propagates=False,
)
