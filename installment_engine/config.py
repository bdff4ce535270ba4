"""Configuration management for the installment engine."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from installment_engine.exceptions import ConfigurationError


@dataclass
class PlanConfig:
    """Limits applied when plans are created or renegotiated."""

    max_installments: int = 60
    max_interest_rate: Decimal = Decimal("100")
    currency_symbol: str = "$"


@dataclass
class ModificationConfig:
    """Modification workflow policy."""

    require_approval: bool = True
    consistency_tolerance: Decimal = Decimal("0.01")
    preview_schedule_length: int = 6


@dataclass
class KafkaConfig:
    """Kafka producer configuration."""

    bootstrap_servers: str = "localhost:9092"
    acks: str = "all"
    batch_size: int = 16384
    linger_ms: int = 5
    compression: str = "snappy"
    retries: int = 3
    schema_registry_url: str | None = None  # Avro envelopes when set

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka producer settings."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "batch.size": self.batch_size,
            "linger.ms": self.linger_ms,
            "compression.type": self.compression,
            "retries": self.retries,
        }


@dataclass
class EventConfig:
    """Domain event publication settings."""

    enabled: bool = False
    topic_prefix: str = "dev.installments"
    source: str = "installment-engine"

    def topic(self, stream: str) -> str:
        """Full topic name for a stream (plans, payments, modifications)."""
        return f"{self.topic_prefix}.{stream}"


@dataclass
class OutputConfig:
    """Output configuration."""

    json_output_dir: Path = field(default_factory=lambda: Path("output"))
    pretty_json: bool = False


@dataclass
class ScenarioConfig:
    """Configuration for the sample portfolio scenario."""

    name: str
    num_plans: int = 50
    reference_date: date | None = None
    modification_rate: float = 0.20
    approval_rate: float = 0.75
    on_time_rate: float = 0.85
    late_rate: float = 0.10
    default_rate: float = 0.05
    labels: dict[str, Any] = field(default_factory=dict)


@dataclass
class EngineConfig:
    """Main configuration for the installment engine."""

    plans: PlanConfig = field(default_factory=PlanConfig)
    modifications: ModificationConfig = field(default_factory=ModificationConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    events: EventConfig = field(default_factory=EventConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    scenario: ScenarioConfig | None = None
    seed: int | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        import os

        plans = PlanConfig(
            max_installments=_env_int("MAX_INSTALLMENTS", "60"),
            max_interest_rate=_env_decimal("MAX_INTEREST_RATE", "100"),
            currency_symbol=os.getenv("CURRENCY_SYMBOL", "$"),
        )

        modifications = ModificationConfig(
            require_approval=os.getenv("REQUIRE_APPROVAL", "true").lower() == "true",
            consistency_tolerance=_env_decimal("CONSISTENCY_TOLERANCE", "0.01"),
            preview_schedule_length=_env_int("PREVIEW_SCHEDULE_LENGTH", "6"),
        )

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            schema_registry_url=os.getenv("SCHEMA_REGISTRY_URL") or None,
        )

        events = EventConfig(
            enabled=os.getenv("EVENTS_ENABLED", "false").lower() == "true",
            topic_prefix=os.getenv("TOPIC_PREFIX", "dev.installments"),
        )

        output = OutputConfig(
            json_output_dir=Path(os.getenv("OUTPUT_DIR", "output")),
            pretty_json=os.getenv("PRETTY_JSON", "false").lower() == "true",
        )

        seed = os.getenv("SEED")

        config = cls(
            plans=plans,
            modifications=modifications,
            kafka=kafka,
            events=events,
            output=output,
            seed=_env_int("SEED", seed) if seed else None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject configuration values the engine cannot work with."""
        if self.plans.max_installments < 1:
            raise ConfigurationError(
                "max_installments must be at least 1",
                field="plans.max_installments",
                details={"value": self.plans.max_installments},
            )
        if self.plans.max_interest_rate < 0:
            raise ConfigurationError(
                "max_interest_rate cannot be negative",
                field="plans.max_interest_rate",
                details={"value": str(self.plans.max_interest_rate)},
            )
        if self.modifications.consistency_tolerance < 0:
            raise ConfigurationError(
                "consistency_tolerance cannot be negative",
                field="modifications.consistency_tolerance",
                details={"value": str(self.modifications.consistency_tolerance)},
            )
        if self.modifications.preview_schedule_length < 1:
            raise ConfigurationError(
                "preview_schedule_length must be at least 1",
                field="modifications.preview_schedule_length",
                details={"value": self.modifications.preview_schedule_length},
            )


def _env_int(name: str, default: str) -> int:
    import os

    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer", field=name, details={"value": raw}
        ) from exc


def _env_decimal(name: str, default: str) -> Decimal:
    import os

    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigurationError(
            f"{name} must be a decimal number", field=name, details={"value": raw}
        ) from exc
