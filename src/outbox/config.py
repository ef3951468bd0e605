"""
Configuration for the outbox pipeline.

Resolves the ``outbox``, ``kafka`` and ``service`` sections of the application
config into module constants, and provides topic routing and the integration
event allowlist.
"""

from typing import Dict, List

from src.config import config

_outbox = config["outbox"]
_kafka = config["kafka"]
_service = config["service"]

# Envelope metadata
SERVICE_NAME: str = _service["name"]
EVENT_VERSION: int = _service["event_version"]

# Retry configuration
MAX_RETRIES: int = _outbox["max_retries"]
BACKOFF_DELAY_SECONDS: float = _outbox["backoff_delay_seconds"]
BACKOFF_MAX_DELAY_SECONDS: float = _outbox["backoff_max_delay_seconds"]

# Scheduler configuration
PENDING_POLL_INTERVAL: float = _outbox["pending_poll_interval_seconds"]
STUCK_POLL_INTERVAL: float = _outbox["stuck_poll_interval_seconds"]
CLEANUP_INTERVAL: float = _outbox["cleanup_interval_seconds"]
PENDING_STALENESS_SECONDS: int = _outbox["pending_staleness_seconds"]
STUCK_THRESHOLD_SECONDS: int = _outbox["stuck_threshold_seconds"]
RETENTION_HOURS: int = _outbox["retention_hours"]
PENDING_BATCH_SIZE: int = _outbox["pending_batch_size"]
STUCK_BATCH_SIZE: int = _outbox["stuck_batch_size"]

# Delivery queue
ENQUEUE_MARKER_TTL_SECONDS: int = _outbox["enqueue_marker_ttl_seconds"]
ENQUEUE_MARKER_PREFIX = "outbox:enqueued:"

# Integration events written to the outbox by the command handlers
INTEGRATION_EVENTS: List[str] = list(_outbox["integration_events"])

# Topic routing: event type prefix (before the first dot) -> topic
TOPIC_ROUTES: Dict[str, str] = dict(_kafka["topics"])
DEFAULT_TOPIC: str = _kafka["default_topic"]


def get_topic_for_event(event_type: str) -> str:
    """
    Resolve the bus topic for an event type.

    ``invitation.completed`` routes by its ``invitation`` prefix; unknown
    prefixes go to the default topic.
    """
    prefix = event_type.split(".", 1)[0]
    return TOPIC_ROUTES.get(prefix, DEFAULT_TOPIC)


def is_integration_event(event_type: str) -> bool:
    """
    Check if a domain event type is forwarded to the outbox.

    Args:
        event_type: Type of event to check

    Returns:
        bool: True if the event is an integration event
    """
    return event_type in INTEGRATION_EVENTS


def compute_backoff(attempt: int) -> float:
    """Exponential backoff in seconds for a zero-based retry attempt, capped."""
    return min(BACKOFF_DELAY_SECONDS * (2**attempt), BACKOFF_MAX_DELAY_SECONDS)
