"""
src/tasks.py

Celery task definitions for outbox delivery.
"""

from src.celery_app import celery_app
from src.events.exceptions import RetryablePublishError
from src.outbox.config import MAX_RETRIES, compute_backoff
from src.outbox.publisher import PublisherWorker, get_publisher_worker
from src.outbox.queue import get_delivery_queue
from src.utils.logger import get_logger

logger = get_logger()


def _publish_outbox_event_core(
    event_id: str,
    is_retry: bool = False,
    task_id: str = "unknown",
    worker: PublisherWorker = None,
) -> dict:
    """
    Core logic for delivering one outbox event.
    Extracted for easier testing.

    Args:
        event_id (str): Outbox event id.
        is_retry (bool): Whether this is a retry of a failed attempt.
        task_id (str): Task ID for logging.
        worker (PublisherWorker): Publisher to use (global if not provided).

    Returns:
        dict: Status result

    Raises:
        RetryablePublishError: If publishing failed and should be retried
    """
    worker = worker or get_publisher_worker()
    logger.info(f"[Task {task_id}] Publishing outbox event {event_id}{' (retry)' if is_retry else ''}")

    outcome = worker.publish(event_id, is_retry=is_retry)

    logger.info(f"[Task {task_id}] Outbox event {event_id}: {outcome.value}")
    return {"status": outcome.value, "event_id": event_id}


def _release_marker(event_id: str, task_id: str) -> None:
    try:
        get_delivery_queue().release(event_id)
    except Exception as e:
        # The marker expires on its own
        logger.warning(f"[Task {task_id}] Could not release enqueue marker for {event_id}: {e}")


@celery_app.task(bind=True, name="src.tasks.publish_outbox_event", max_retries=MAX_RETRIES)
def publish_outbox_event(self, event_id: str):
    """
    Celery task that delivers one outbox event to the message bus.

    Enqueued with ``task_id = event_id``. A retryable publish failure is
    retried with exponential backoff; once the task is finished (published,
    skipped or parked) the enqueue marker is released.

    Args:
        self: The task instance (available via bind=True).
        event_id (str): Outbox event id.
    """
    task_id = self.request.id
    attempt = self.request.retries
    try:
        result = _publish_outbox_event_core(event_id, is_retry=attempt > 0, task_id=task_id)
    except RetryablePublishError as exc:
        if attempt < self.max_retries:
            countdown = compute_backoff(attempt)
            logger.warning(
                f"[Task {task_id}] Retrying outbox event {event_id} in {countdown}s "
                f"(attempt {exc.retry_count}): {exc.original_error}"
            )
            raise self.retry(exc=exc, countdown=countdown)
        _release_marker(event_id, task_id)
        raise
    except Exception as e:
        logger.error(f"[Task {task_id}] Error publishing outbox event {event_id}: {e}", exc_info=True)
        _release_marker(event_id, task_id)
        raise

    _release_marker(event_id, task_id)
    return result
