"""
Message bus abstraction and the Kafka implementation.

The publisher only needs ``publish(topic, key, value)``; the key is the
aggregate id so that events of one aggregate land on one partition and keep
their order.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from kafka import KafkaProducer

from src.config import config

logger = logging.getLogger(__name__)


class MessageBus(ABC):
    """Publishes serialized events to a topic."""

    @abstractmethod
    def publish(self, topic: str, key: str, value: Dict[str, Any]) -> None:
        """
        Publish a message and block until the broker acknowledged it.

        Args:
            topic: Destination topic
            key: Partition key (aggregate id)
            value: JSON-serializable message body

        Raises:
            Exception: If the broker did not acknowledge the message
        """

    def close(self) -> None:
        """Release client resources."""


class KafkaMessageBus(MessageBus):
    """MessageBus backed by a kafka-python producer (created lazily)."""

    def __init__(
        self,
        bootstrap_servers: Optional[str] = None,
        client_id: Optional[str] = None,
        request_timeout_ms: Optional[int] = None,
        producer: Optional[KafkaProducer] = None,
    ):
        kafka_config = config["kafka"]
        self.bootstrap_servers = bootstrap_servers or kafka_config["bootstrap_servers"]
        self.client_id = client_id or kafka_config["client_id"]
        self.request_timeout_ms = request_timeout_ms or kafka_config["request_timeout_ms"]
        self._producer = producer
        self._lock = threading.Lock()

    def _get_producer(self) -> KafkaProducer:
        if self._producer is None:
            with self._lock:
                if self._producer is None:
                    logger.info(f"Connecting Kafka producer to {self.bootstrap_servers}")
                    self._producer = KafkaProducer(
                        bootstrap_servers=self.bootstrap_servers.split(","),
                        client_id=self.client_id,
                        acks="all",
                        request_timeout_ms=self.request_timeout_ms,
                        key_serializer=lambda k: k.encode("utf-8"),
                        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                    )
        return self._producer

    def publish(self, topic: str, key: str, value: Dict[str, Any]) -> None:
        producer = self._get_producer()
        future = producer.send(topic, key=key, value=value)
        metadata = future.get(timeout=self.request_timeout_ms / 1000)
        logger.debug(
            f"Published to {metadata.topic}[{metadata.partition}] at offset {metadata.offset} (key={key})"
        )

    def close(self) -> None:
        with self._lock:
            if self._producer is not None:
                logger.info("Closing Kafka producer...")
                self._producer.flush()
                self._producer.close()
                self._producer = None


# Global message bus instance
_message_bus: Optional[MessageBus] = None


def get_message_bus() -> MessageBus:
    """Get the global message bus (Kafka) instance."""
    global _message_bus
    if _message_bus is None:
        _message_bus = KafkaMessageBus()
    return _message_bus
