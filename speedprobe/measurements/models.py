"""Shared dataclasses for measurements."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Union

from ..errors import ProtocolError

SUBTESTS = ("latency", "download", "upload", "jitter")

# Attribute name -> JSON key used on the wire and in the store.
WIRE_FIELDS = {
    "latency_ms": "latencyMs",
    "download_mbps": "downloadSpeedMbps",
    "upload_mbps": "uploadSpeedMbps",
    "jitter_ms": "jitterMs",
    "packet_loss_percent": "packetLossPercent",
}


def _metric(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Field {key} must be a number or null")
    value = float(value)
    if not math.isfinite(value):
        raise ProtocolError(f"Field {key} must be finite")
    return value


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ProtocolError("Field timestamp must be an ISO 8601 string")
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ProtocolError(f"Field timestamp is not ISO 8601: {value!r}") from exc


@dataclass(frozen=True)
class ResultRecord:
    """Snapshot of a finished run, as persisted and shared."""

    latency_ms: Optional[float] = None
    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    jitter_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None
    id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {wire: getattr(self, attr) for attr, wire in WIRE_FIELDS.items()}
        if self.id is not None:
            payload["id"] = self.id
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp.isoformat()
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "ResultRecord":
        if not isinstance(data, dict):
            raise ProtocolError("Result payload must be a JSON object")
        return cls(
            id=data.get("id"),
            timestamp=_timestamp(data.get("timestamp")),
            **{attr: _metric(data, wire) for attr, wire in WIRE_FIELDS.items()},
        )

    def with_identity(self, record_id: str, timestamp: datetime) -> "ResultRecord":
        return replace(self, id=record_id, timestamp=timestamp)


@dataclass
class MeasurementRun:
    """Mutable state for one full test cycle. ``None`` means not measured."""

    started_at: datetime
    latency_ms: Optional[float] = None
    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    jitter_ms: Optional[float] = None
    packet_loss_percent: Optional[float] = None
    statuses: Dict[str, str] = field(default_factory=lambda: {name: "Ready" for name in SUBTESTS})
    in_progress: bool = True
    share_id: Optional[str] = None
    record: Optional[ResultRecord] = None

    @property
    def measured_anything(self) -> bool:
        return any(getattr(self, attr) is not None for attr in WIRE_FIELDS)

    def to_record(self) -> ResultRecord:
        return ResultRecord(**{attr: getattr(self, attr) for attr in WIRE_FIELDS})


@dataclass(frozen=True)
class ProbePacket:
    id: int
    send_time: float

    def encode(self) -> str:
        return json.dumps({"id": self.id, "sendTime": self.send_time}, separators=(",", ":"))

    @classmethod
    def decode(cls, data: Union[str, bytes, bytearray]) -> "ProbePacket":
        try:
            if isinstance(data, (bytes, bytearray)):
                data = data.decode("utf-8")
            payload = json.loads(data)
            return cls(id=int(payload["id"]), send_time=float(payload["sendTime"]))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise ProtocolError(f"Malformed probe packet: {exc}") from exc
