"""
Consumer for ``invitation.completed`` integration events.

Used by the analysis service: reads the interview events topic, ignores
every other event type, and hands each completed interview to an analysis
callback exactly once per service through the idempotency guard.

Run standalone:
    python -m src.consumers.invitation_completed
"""

import argparse
import json
import logging
import signal
from typing import Any, Callable, Dict, Optional, Union

from kafka import KafkaConsumer, TopicPartition
from pydantic import ValidationError as PydanticValidationError

from src.config import config
from src.events.envelope import IntegrationEnvelope
from src.events.invitation_events import INVITATION_COMPLETED, InvitationCompletedData
from src.outbox.config import get_topic_for_event

from .idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


class InvalidMessageError(ValueError):
    """Raised when a bus message is not JSON or not a valid envelope."""


AnalysisCallback = Callable[[InvitationCompletedData], Any]


def log_completed_interview(data: InvitationCompletedData) -> None:
    """Default analysis callback: record the completed interview in the log."""
    logger.info(
        f"Completed interview received: invitation={data.invitation_id}, "
        f"template={data.template_title!r}, answered={data.answered}/{data.total}, reason={data.reason.value}"
    )


class InvitationCompletedConsumer:
    """Applies ``invitation.completed`` events under the idempotency ledger."""

    def __init__(
        self,
        guard: Optional[IdempotencyGuard] = None,
        on_completed: Optional[AnalysisCallback] = None,
        service_name: Optional[str] = None,
    ):
        """
        Initialize the consumer.

        Args:
            guard: Idempotency guard (built from global config if not provided)
            on_completed: Callback that analyses the interview; must be idempotent
            service_name: Ledger service name (defaults to the guard's)
        """
        self.guard = guard or IdempotencyGuard()
        self.on_completed = on_completed or log_completed_interview
        self.service_name = service_name or self.guard.service_name
        self._running = False

    def handle_message(self, raw: Union[bytes, str, Dict[str, Any], None]) -> bool:
        """
        Handle one bus message.

        Returns:
            bool: True if the analysis callback ran, False if the message was
            empty, of another type, or a duplicate

        Raises:
            InvalidMessageError: If the message is not JSON or not a valid envelope
            pydantic.ValidationError: If the completed payload is invalid
        """
        if raw is None:
            logger.warning("Received message with null value")
            return False

        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise InvalidMessageError(f"Message is not valid JSON: {e}") from e

        try:
            envelope = IntegrationEnvelope.from_wire(raw)
        except PydanticValidationError as e:
            raise InvalidMessageError(f"Invalid event envelope: {e}") from e

        if envelope.event_type != INVITATION_COMPLETED:
            logger.debug(f"Ignoring event type: {envelope.event_type}")
            return False

        return self.guard.process_safely(
            envelope.event_id,
            envelope.event_type,
            self.service_name,
            envelope.payload,
            self._apply,
        )

    def _apply(self, payload: Dict[str, Any]) -> None:
        data = InvitationCompletedData.model_validate(payload)
        logger.info(
            f"Received invitation.completed: invitation={data.invitation_id}, questions={len(data.questions)}"
        )
        self.on_completed(data)

    def run(self, consumer: Optional[KafkaConsumer] = None) -> None:
        """
        Consume until ``stop`` is called.

        Offsets are committed only after a message was handled. Malformed
        messages can never succeed and are committed past. Any other failure
        rewinds its partition to the failed offset and skips the rest of that
        partition's batch, so the message is polled again and no later offset
        is committed over it.
        """
        consumer = consumer or self._create_consumer()
        self._running = True
        logger.info(f"Subscribed to {consumer.subscription()} as {self.service_name}")

        try:
            while self._running:
                batches = consumer.poll(timeout_ms=1000)
                for records in batches.values():
                    for message in records:
                        if not self._process(consumer, message):
                            break
        finally:
            consumer.close()
            logger.info("Invitation consumer stopped")

    def _process(self, consumer: KafkaConsumer, message) -> bool:
        """Handle and commit one record; returns False if its partition was rewound."""
        location = f"{message.topic}[{message.partition}]@{message.offset}"
        try:
            self.handle_message(message.value)
        except (InvalidMessageError, PydanticValidationError) as e:
            logger.error(f"Skipping malformed message at {location}: {e}")
        except Exception as e:
            logger.error(f"Failed to process message at {location}, will retry: {e}", exc_info=True)
            consumer.seek(TopicPartition(message.topic, message.partition), message.offset)
            return False
        consumer.commit()
        return True

    def stop(self) -> None:
        self._running = False

    @staticmethod
    def _create_consumer() -> KafkaConsumer:
        kafka_config = config["kafka"]
        return KafkaConsumer(
            get_topic_for_event(INVITATION_COMPLETED),
            bootstrap_servers=kafka_config["bootstrap_servers"].split(","),
            group_id=config["idempotency"]["consumer_group"],
            client_id=kafka_config["client_id"],
            auto_offset_reset="earliest",
            enable_auto_commit=False,
        )


def main(log_level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s:%(filename)s:%(lineno)d | %(message)s",
        datefmt="%H:%M:%S",
    )
    consumer = InvitationCompletedConsumer()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, stopping consumer...")
        consumer.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    consumer.run()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Consume invitation.completed events")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()
    main(log_level=args.log_level)
