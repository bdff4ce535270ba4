"""Kafka sink publishing installment domain events."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from confluent_kafka import KafkaException, Producer
from confluent_kafka.serialization import MessageField, SerializationContext

from installment_engine.config import KafkaConfig
from installment_engine.exceptions import SinkError
from installment_engine.models.base import Event
from installment_engine.sinks.serialization import serialize_value, to_dict

logger = logging.getLogger(__name__)

SCHEMA_NAMESPACE = "com.installments.events"

# One envelope for every stream; ``data`` and ``metadata`` travel as JSON text
EVENT_SCHEMA = {
    "type": "record",
    "name": "InstallmentEvent",
    "namespace": SCHEMA_NAMESPACE,
    "fields": [
        {"name": "event_id", "type": "string"},
        {"name": "event_type", "type": "string"},
        {"name": "event_time", "type": {"type": "long", "logicalType": "timestamp-millis"}},
        {"name": "source", "type": "string"},
        {"name": "subject", "type": "string"},
        {"name": "data", "type": "string"},
        {"name": "metadata", "type": "string"},
    ],
}


@dataclass
class ProducerStats:
    """Delivery counters for one sink."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0
    by_topic: dict[str, int] = field(default_factory=dict)
    start_time: float | None = None
    end_time: float | None = None

    @property
    def pending(self) -> int:
        """Messages handed to the producer without a delivery report yet."""
        return max(self.sent - self.delivered - self.failed, 0)

    @property
    def success_rate(self) -> float:
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


def event_to_avro(event: Any, ctx: SerializationContext | None = None) -> dict:
    """Flatten an :class:`Event` into the ``EVENT_SCHEMA`` record."""
    if not isinstance(event, Event):
        raise ValueError(f"Cannot convert {type(event).__name__} to an event record")
    return {
        "event_id": event.event_id,
        "event_type": event.event_type,
        "event_time": int(event.event_time.timestamp() * 1000),
        "source": event.source,
        "subject": event.subject,
        "data": json.dumps(event.data, ensure_ascii=False, default=serialize_value),
        "metadata": json.dumps(event.metadata, ensure_ascii=False, default=serialize_value),
    }


class KafkaSink:
    """Publish engine events to Kafka, keyed by plan id.

    Events are JSON-encoded unless ``schema_registry_url`` is configured and
    the ``avro`` extra is installed, in which case every topic shares the
    ``InstallmentEvent`` Avro schema.
    """

    def __init__(self, config: KafkaConfig | str) -> None:
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.producer = Producer(config.to_dict())
        self.stats = ProducerStats(start_time=time.time())
        self._avro_serializer: Any = None

        if config.schema_registry_url:
            self._avro_serializer = self._create_avro_serializer(config.schema_registry_url)

    def _create_avro_serializer(self, registry_url: str) -> Any:
        try:
            from confluent_kafka.schema_registry import SchemaRegistryClient
            from confluent_kafka.schema_registry.avro import AvroSerializer
        except ImportError:
            logger.warning(
                "confluent-kafka[avro] not installed, publishing JSON instead. "
                "Install with: pip install 'installment-engine[avro]'"
            )
            return None

        client = SchemaRegistryClient({"url": registry_url})
        logger.info("Avro event serializer registered against %s", registry_url)
        return AvroSerializer(client, json.dumps(EVENT_SCHEMA), to_dict=event_to_avro)

    def _encode(self, topic: str, record: Any) -> bytes:
        if self._avro_serializer is not None and isinstance(record, Event):
            return self._avro_serializer(record, SerializationContext(topic, MessageField.VALUE))
        return json.dumps(to_dict(record), ensure_ascii=False, default=serialize_value).encode(
            "utf-8"
        )

    def _on_delivery(self, err: Any, msg: Any) -> None:
        if err:
            self.stats.failed += 1
            logger.error("Delivery failed: %s", err)
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        """Produce one record. Events default to their subject as key.

        Raises
        ------
        SinkError
            If the record cannot be encoded (schema registry, Avro or JSON
            errors) or the producer rejects it (queue full, broker error).
        """
        try:
            value = self._encode(topic, record)
        except Exception as exc:
            self.stats.failed += 1
            raise SinkError(
                f"Could not encode record for {topic}: {exc}",
                field="record",
                details={"topic": topic, "error": type(exc).__name__},
            ) from exc
        if key is None and isinstance(record, Event):
            key = record.subject

        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8") if key else None,
                value=value,
                callback=self._on_delivery,
            )
        except (BufferError, KafkaException) as exc:
            self.stats.failed += 1
            raise SinkError(
                f"Kafka rejected message for {topic}", field="topic", details={"topic": topic}
            ) from exc

        self.stats.sent += 1
        self.stats.by_topic[topic] = self.stats.by_topic.get(topic, 0) + 1
        self.producer.poll(0)

    def write_batch(self, topic: str, records: list[Any]) -> None:
        """Produce every record to ``topic`` and wait for delivery."""
        for record in records:
            self.send(topic, record)
        self.flush()
        logger.info("Published %d records to %s", len(records), topic)

    def flush(self, timeout: float = 30.0) -> int:
        """Wait for outstanding deliveries; returns messages still queued."""
        return self.producer.flush(timeout)

    def close(self) -> None:
        """Flush and log delivery totals."""
        remaining = self.flush()
        self.stats.end_time = time.time()
        if remaining:
            logger.warning("Kafka sink closed with %d undelivered messages", remaining)
        logger.info(
            "Kafka sink closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )
