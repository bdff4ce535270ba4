"""Base models shared across the engine."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Event:
    """Standard event envelope for streaming."""

    event_id: str
    event_type: str  # entity.action (e.g., payment.recorded)
    event_time: datetime
    source: str  # Service/system that generated
    subject: str  # Plan ID affected
    data: dict
    metadata: dict = field(default_factory=dict)
