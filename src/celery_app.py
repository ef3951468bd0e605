"""
src/celery_app.py

Configuration and entry point for the Celery application instance that runs
outbox delivery jobs.
"""

from celery import Celery

from src.config import config

_celery_config = config["celery"]
broker_url = _celery_config["broker_url"]

celery_app = Celery(
    "interview_service",
    broker=broker_url,
    backend=_celery_config.get("result_backend") or broker_url,
    include=["src.tasks"],
)

celery_app.conf.update(
    result_expires=3600,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_concurrency=_celery_config["worker_concurrency"],
    # A publish job is only acknowledged once it has run, so a crashed worker's job is redelivered
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

if __name__ == "__main__":
    celery_app.start()
