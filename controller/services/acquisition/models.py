"""
Reading Records

A Reading is produced once per device per poll attempt and never mutated
afterwards. It is serialized with the camelCase keys used by the history
files and the live-update sink.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC"""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Reading:
    """One poll result for one device"""
    device_id: int | str
    timestamp: str
    values: Mapping[str, dict[str, Any]] | None = None
    error: str | None = None

    def __post_init__(self):
        if self.values is not None:
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def success(
        cls,
        device_id: int | str,
        values: dict[str, dict[str, Any]],
        timestamp: str | None = None,
    ) -> "Reading":
        return cls(device_id=device_id, timestamp=timestamp or utc_now_iso(), values=values)

    @classmethod
    def failure(
        cls,
        device_id: int | str,
        error: str,
        timestamp: str | None = None,
    ) -> "Reading":
        return cls(device_id=device_id, timestamp=timestamp or utc_now_iso(), error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def failed_parameters(self) -> list[str]:
        """Parameters whose register read failed"""
        if not self.values:
            return []
        return [name for name, entry in self.values.items() if "error" in entry]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "deviceId": self.device_id,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            data["error"] = self.error
        else:
            data["values"] = {name: dict(entry) for name, entry in (self.values or {}).items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Reading":
        return cls(
            device_id=data["deviceId"],
            timestamp=data["timestamp"],
            values=data.get("values"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class DecodedValue:
    """Scaled register value plus the raw words it came from"""
    value: str
    numeric: float
    raw: list[int] = field(default_factory=list)
