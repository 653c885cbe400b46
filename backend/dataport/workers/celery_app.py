"""Celery application for background import invocations."""

import ssl

from celery import Celery
from celery.signals import setup_logging

from dataport.core.config import get_settings
from dataport.core.logging_setup import configure_logging
from dataport.utils.redis_client import normalize_redis_url

settings = get_settings()

IMPORT_QUEUE = "imports"


def _with_ssl_param(url: str) -> str:
    # The Redis result backend reads ssl_cert_reqs from the URL during init
    if "ssl_cert_reqs" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}ssl_cert_reqs=none"


broker_url, broker_tls = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url, backend_tls = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = broker_tls or backend_tls
if is_ssl:
    broker_url = _with_ssl_param(broker_url)
    backend_url = _with_ssl_param(backend_url)

celery_app = Celery(
    "dataport",
    broker=broker_url,
    backend=backend_url,
    include=["dataport.workers.tasks.import_products"],
)

celery_app.conf.task_routes = {
    "dataport.workers.tasks.process_import_job": {"queue": IMPORT_QUEUE},
    "dataport.workers.tasks.process_pending_imports": {"queue": IMPORT_QUEUE},
}
celery_app.conf.task_default_queue = IMPORT_QUEUE

# Resume stranded jobs (crashed workers, lost re-enqueues) on a fixed cadence
celery_app.conf.beat_schedule = {
    "resume-pending-imports": {
        "task": "dataport.workers.tasks.process_pending_imports",
        "schedule": float(settings.cron_interval_seconds),
    },
}

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    # One invocation is bounded by the import time budget; these are backstops
    "task_soft_time_limit": int(settings.import_time_budget_seconds * 4),
    "task_time_limit": int(settings.import_time_budget_seconds * 5),
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings.log_level)
