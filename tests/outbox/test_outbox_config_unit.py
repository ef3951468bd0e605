"""
Unit tests for outbox routing, the integration event allowlist and backoff.
"""

from unittest.mock import patch

import pytest

from src.outbox import config as outbox_config
from src.outbox.config import compute_backoff, get_topic_for_event, is_integration_event


class TestTopicRouting:
    """Test event type to topic resolution."""

    def test_routes_by_prefix(self):
        with patch.dict(outbox_config.TOPIC_ROUTES, {"invitation": "interview-events"}, clear=True):
            assert get_topic_for_event("invitation.completed") == "interview-events"
            assert get_topic_for_event("invitation.response.submitted") == "interview-events"

    def test_unknown_prefix_uses_default(self):
        with patch.dict(outbox_config.TOPIC_ROUTES, {}, clear=True):
            with patch.object(outbox_config, "DEFAULT_TOPIC", "fallback"):
                assert get_topic_for_event("template.published") == "fallback"


class TestIntegrationEvents:
    """Test the allowlist."""

    @pytest.mark.parametrize(
        "event_type",
        [
            "invitation.created",
            "invitation.started",
            "invitation.response.submitted",
            "invitation.completed",
            "invitation.expired",
        ],
    )
    def test_lifecycle_events_are_forwarded(self, event_type):
        assert is_integration_event(event_type)

    def test_heartbeat_is_not_forwarded(self):
        """Activity heartbeats never reach the outbox."""
        assert not is_integration_event("invitation.activity")


class TestBackoff:
    """Test the retry delay."""

    def test_exponential_and_capped(self):
        with patch.object(outbox_config, "BACKOFF_DELAY_SECONDS", 2.0), patch.object(
            outbox_config, "BACKOFF_MAX_DELAY_SECONDS", 10.0
        ):
            assert [compute_backoff(n) for n in range(5)] == [2.0, 4.0, 8.0, 10.0, 10.0]
