"""Celery app for match maintenance.

Only the maintenance tasks in `workers.tasks` run here; gameplay never goes
through Celery. There is no beat schedule: the deployment's scheduler (cron,
k8s CronJob, beat in another repo) enqueues `workers.tasks.sweep_matches`
every few minutes and the other tasks as needed.

    celery -A workers.celery_app worker -Q maintenance,default
"""
import sys
import os
from pathlib import Path

# Add project root to Python path so imports work when celery runs this module directly
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Configure timezone BEFORE importing anything else
import pytz
os.environ['TZ'] = 'UTC'

from celery import Celery
from kombu import Exchange, Queue
import logging
import config

logger = logging.getLogger(__name__)

MAINTENANCE_QUEUE = "maintenance"
DEFAULT_QUEUE = "default"

app = Celery("match_server")
logger.info(f"[CELERY] Broker {config.CELERY_BROKER_URL}, results {config.CELERY_RESULT_BACKEND}")

app.config_from_object({
    "broker_url": config.CELERY_BROKER_URL,
    "result_backend": config.CELERY_RESULT_BACKEND,
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": pytz.UTC,
    "enable_utc": True,
    # a sweep interrupted mid-way is safe to run again
    "task_acks_late": True,
    "worker_prefetch_multiplier": 1,
    # sweep results are only interesting for a few hours
    "result_expires": 6 * 3600,
})

app.conf.task_queues = tuple(
    Queue(
        name,
        exchange=Exchange(name, type="direct"),
        routing_key=name,
        queue_arguments={"x-max-priority": 10},
    )
    for name in (DEFAULT_QUEUE, MAINTENANCE_QUEUE)
)

app.conf.task_default_queue = DEFAULT_QUEUE
app.conf.task_default_exchange = DEFAULT_QUEUE
app.conf.task_default_routing_key = DEFAULT_QUEUE
app.conf.task_routes = {
    "workers.tasks.*": {"queue": MAINTENANCE_QUEUE, "routing_key": MAINTENANCE_QUEUE},
}

app.conf.task_default_retry_delay = 60
app.conf.task_max_retries = 5

# No Redis or SQLite connections are opened at import time. Each task opens a
# runtime inside its own asyncio.run() loop.
