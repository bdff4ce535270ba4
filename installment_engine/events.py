"""Domain event publication."""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Protocol

from installment_engine.config import EventConfig
from installment_engine.exceptions import SinkError
from installment_engine.models.base import Event

logger = logging.getLogger(__name__)

# Event type -> stream the topic is derived from
EVENT_STREAMS = {
    "plan.created": "plans",
    "plan.status_changed": "plans",
    "plan.completed": "plans",
    "payment.recorded": "payments",
    "modification.requested": "modifications",
    "modification.approved": "modifications",
    "modification.rejected": "modifications",
    "modification.applied": "modifications",
}


class EventSink(Protocol):
    """Anything that can deliver a record to a topic (e.g. ``KafkaSink``)."""

    def send(self, topic: str, record: Any, key: str | None = None) -> None: ...


class EventPublisher:
    """Wrap engine notifications in ``Event`` envelopes and hand them to a sink.

    Publication happens after the state change has been committed, so a
    delivery failure is logged and counted but never undoes or fails the
    operation that produced it.
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        config: EventConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.sink = sink
        self.config = config or EventConfig()
        self.clock = clock
        self.published = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    def publish(self, event_type: str, subject: str, data: dict[str, Any]) -> Event | None:
        """Publish one event; returns the envelope, or None when no sink is set."""
        if self.sink is None:
            return None

        event = Event(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            event_time=self.clock(),
            source=self.config.source,
            subject=subject,
            data=data,
        )
        topic = self.config.topic(EVENT_STREAMS.get(event_type, "events"))

        try:
            self.sink.send(topic, event, key=subject)
        except SinkError as exc:
            self.failed += 1
            logger.error("Failed to publish %s for %s: %s", event_type, subject, exc)
            return event
        except Exception:
            # State is already committed; any sink failure stops here
            self.failed += 1
            logger.exception("Sink raised while publishing %s for %s", event_type, subject)
            return event

        self.published += 1
        logger.debug("Published %s for %s to %s", event_type, subject, topic)
        return event
