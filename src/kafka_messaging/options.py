"""Producer/consumer tuning options."""

import os
from dataclasses import dataclass, fields
from typing import Union

from kafka_messaging.common.exceptions import ConfigurationError

ACKS_VALUES = (0, 1, "all")
COMPRESSION_TYPES = ("none", "gzip", "snappy", "lz4", "zstd")
OFFSET_RESET_VALUES = ("earliest", "latest")


@dataclass(frozen=True)
class KafkaOptions:
    """Tuning knobs shared by producers, consumers and the broker driver.

    Defaults are production-safe: acknowledgement from all in-sync replicas,
    idempotent producer, auto-commit every 5 seconds. All timing values in
    milliseconds.
    """

    # Common
    connect_timeout_ms: int = 10000
    session_timeout_ms: int = 30000
    reconnect_backoff_ms: int = 100
    max_reconnect_retry: int = 5

    # Producer
    acks: Union[int, str] = "all"
    # Not forwarded: aiokafka bounds its internal send retries by request_timeout_ms
    retry_max: int = 3
    batch_size: int = 16384
    linger_ms: int = 100
    compression_type: str = "gzip"
    max_message_bytes: int = 1000000
    enable_idempotence: bool = True

    # Consumer
    auto_offset_reset: str = "latest"
    enable_auto_commit: bool = True
    auto_commit_interval_ms: int = 5000
    max_poll_interval_ms: int = 300000
    fetch_max_wait_ms: int = 500
    max_partition_fetch_bytes: int = 1048576

    def __post_init__(self) -> None:
        # -1 is the wire value for "all replicas"
        if self.acks == -1 or self.acks == "-1":
            object.__setattr__(self, "acks", "all")
        elif isinstance(self.acks, str) and self.acks.isdigit():
            object.__setattr__(self, "acks", int(self.acks))
        object.__setattr__(self, "auto_offset_reset", self.auto_offset_reset.lower())
        object.__setattr__(self, "compression_type", self.compression_type.lower())

    def validate(self) -> None:
        """Reject values the broker driver would choke on.

        Raises:
            ConfigurationError: Invalid acks, compression, offset reset policy
                or a negative duration/size
        """
        if self.acks not in ACKS_VALUES:
            raise ConfigurationError(
                f"Unsupported acks value: {self.acks!r}",
                context={"supported": list(ACKS_VALUES)},
            )
        if self.compression_type not in COMPRESSION_TYPES:
            raise ConfigurationError(
                f"Unsupported compression type: {self.compression_type!r}",
                context={"supported": list(COMPRESSION_TYPES)},
            )
        if self.auto_offset_reset not in OFFSET_RESET_VALUES:
            raise ConfigurationError(
                f"Unsupported auto_offset_reset: {self.auto_offset_reset!r}",
                context={"supported": list(OFFSET_RESET_VALUES)},
            )
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "max_reconnect_retry" or isinstance(value, bool):
                continue
            if isinstance(value, int) and value < 0:
                raise ConfigurationError(f"{f.name} must not be negative, got {value}")

    @property
    def connect_timeout(self) -> float:
        """Connect/send retry budget in seconds."""
        return self.connect_timeout_ms / 1000

    @property
    def reconnect_backoff(self) -> float:
        """Initial backoff interval in seconds."""
        return self.reconnect_backoff_ms / 1000

    @classmethod
    def from_env(cls, prefix: str = "KAFKA_") -> "KafkaOptions":
        """Load options from environment variables, falling back to defaults.

        Every field can be overridden with ``<prefix><FIELD_NAME_UPPER>``,
        e.g. KAFKA_ENABLE_AUTO_COMMIT=false or KAFKA_LINGER_MS=50.

        Raises:
            ValueError: If a numeric variable can't be parsed
        """
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            if f.name == "acks":
                overrides[f.name] = raw.strip().lower()
            elif f.type in (bool, "bool"):
                overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif f.type in (int, "int"):
                overrides[f.name] = int(raw)
            else:
                overrides[f.name] = raw.strip()
        return cls(**overrides)


def default_options() -> KafkaOptions:
    """Return the default, production-safe option set."""
    return KafkaOptions()


__all__ = [
    "KafkaOptions",
    "default_options",
    "ACKS_VALUES",
    "COMPRESSION_TYPES",
    "OFFSET_RESET_VALUES",
]
