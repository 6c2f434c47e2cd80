"""Wire-agnostic record value type."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


def to_bytes(value: Union[bytes, bytearray, str, None]) -> Optional[bytes]:
    """Normalize str/bytearray payloads to bytes (UTF-8), passing None through."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


@dataclass(frozen=True)
class Message:
    """
    A single Kafka record.

    Flows from the producer to the broker driver and from the driver to the
    consumer's handler. ``partition``, ``offset`` and ``timestamp`` are filled
    in by the consumer (and by write acknowledgements); on produce, an
    explicit ``partition`` pins the record, otherwise the broker assigns one
    from the key. A ``None`` key means "no key".
    """

    topic: str
    value: bytes = b""
    key: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)
    partition: Optional[int] = None
    offset: Optional[int] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.topic:
            raise ValueError("Message topic is required")
        object.__setattr__(self, "value", to_bytes(self.value) or b"")
        object.__setattr__(self, "key", to_bytes(self.key))
        object.__setattr__(self, "headers", dict(self.headers or {}))

    @classmethod
    def from_model(
        cls,
        topic: str,
        key: Union[bytes, str, None],
        model: BaseModel,
        headers: Optional[Dict[str, str]] = None,
    ) -> "Message":
        """Build a message whose value is the model serialized as JSON."""
        return cls(
            topic=topic,
            key=to_bytes(key),
            value=model.model_dump_json().encode("utf-8"),
            headers=headers or {},
        )

    def parse(self, model_cls: Type[M]) -> M:
        """Validate the JSON value into a pydantic model.

        Raises:
            pydantic.ValidationError: If the payload doesn't match the model
        """
        return model_cls.model_validate_json(self.value)

    @property
    def key_str(self) -> Optional[str]:
        """Key decoded as UTF-8 (None when the record has no key)."""
        if self.key is None:
            return None
        return self.key.decode("utf-8", errors="replace")

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.value)


__all__ = ["Message", "to_bytes"]
