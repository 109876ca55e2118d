"""Store event envelope and serialization helpers."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from storekeeper.domain import ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_JSON_DEPTH: Final[int] = 16
_MAX_STRING_LENGTH: Final[int] = 8192


class StoreEventType(StrEnum):
    """Consequential actions reported by a store manager."""

    OPEN = "open"
    CLOSE = "close"
    QUERY = "query"
    MIGRATION = "migration"
    BACKUP = "backup"
    ERROR = "error"


@dataclass(slots=True)
class StoreEvent:
    """Observational notification; never required for correctness."""

    event_id: str
    event_type: StoreEventType
    timestamp: datetime
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = as_event_type(self.event_type)
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise ValueError("StoreEvent.timestamp must be timezone-aware")
        self.timestamp = self.timestamp.astimezone(UTC)
        self.payload = as_json_object(self.payload, "StoreEvent.payload")

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "payload": as_json_object(self.payload, "StoreEvent.payload"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_event(event_type: str | StoreEventType, payload: Mapping[str, object]) -> StoreEvent:
    return StoreEvent(
        event_id=ids.generate_event_id(),
        event_type=as_event_type(event_type),
        timestamp=datetime.now(tz=UTC),
        payload=as_json_object(payload, "payload"),
    )


def error_payload(
    exc: BaseException, *, operation: str, **extra: object
) -> dict[str, object]:
    """Structured error payload: kind, class, message and operation identity."""

    payload: dict[str, object] = {
        "operation": operation,
        "kind": getattr(exc, "kind", "unexpected"),
        "error_type": exc.__class__.__name__,
        "message": str(exc),
    }
    sql = getattr(exc, "sql", None)
    if isinstance(sql, str):
        payload["sql"] = sql
    payload.update(extra)
    return payload


def as_event_type(value: object) -> StoreEventType:
    if isinstance(value, StoreEventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"event_type must be string/StoreEventType, got {type(value).__name__}")
    try:
        return StoreEventType(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in StoreEventType)
        raise ValueError(f"invalid event_type {value!r}; allowed: {allowed}") from exc


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, str):
        if len(value) > _MAX_STRING_LENGTH:
            return value[:_MAX_STRING_LENGTH]
        return value
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    # Paths and other simple objects are reported by their text form.
    return str(value)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "StoreEvent",
    "StoreEventType",
    "as_event_type",
    "as_json_object",
    "build_event",
    "error_payload",
]
