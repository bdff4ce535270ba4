"""Output sinks for exporting plans and publishing engine events."""

from installment_engine.sinks.json_file import JsonFileSink
from installment_engine.sinks.kafka import KafkaSink

__all__ = ["JsonFileSink", "KafkaSink"]
