"""Records decoded from the Veeam REST API and the points written to InfluxDB."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

from influxdb_client import Point, WritePrecision

from .exceptions import DecodeError


T = TypeVar('T')

FieldValue = Union[int, float, str, bool]

# .NET serialises 1-7 fractional digits, fromisoformat wants 3 or 6
_FRACTION_RE = re.compile(r'\.(\d+)')


def parse_timestamp(value: Any, key: str = "timestamp") -> datetime:
    """Parse an ISO 8601 timestamp from the API into an aware datetime."""
    if not isinstance(value, str):
        raise DecodeError(f"{key}: expected ISO 8601 string, got {type(value).__name__}")

    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip(), count=1)
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise DecodeError(f"{key}: invalid timestamp {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _mapping(data: Any, key: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodeError(f"{key}: expected object, got {type(data).__name__}")
    return data


def _str(data: Dict[str, Any], key: str, required: bool = False) -> str:
    value = data.get(key)
    if value is None:
        if required:
            raise DecodeError(f"missing required field '{key}'")
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{key}: expected integer, got {type(value).__name__}")
    return value


def _float(data: Dict[str, Any], key: str) -> float:
    value = data.get(key, 0)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{key}: expected number, got {type(value).__name__}")
    return float(value)


def _bool(data: Dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise DecodeError(f"{key}: expected boolean, got {type(value).__name__}")
    return value


def decode_collection(payload: Any, decoder: Callable[[Dict[str, Any]], T], name: str) -> Tuple[T, ...]:
    """Decode a ``{"data": [...]}`` envelope; any bad record fails the whole collection."""
    body = _mapping(payload, name)
    records = body.get("data")
    if not isinstance(records, list):
        raise DecodeError(f"could not parse {name}: 'data' is not a list")

    decoded = []
    for index, record in enumerate(records):
        try:
            decoded.append(decoder(_mapping(record, f"{name}[{index}]")))
        except DecodeError as e:
            raise DecodeError(f"could not parse {name}[{index}]: {e}") from e
    return tuple(decoded)


class SessionResult(Enum):
    """Outcome of a job session."""
    SUCCESS = "Success"
    WARNING = "Warning"
    FAILED = "Failed"
    NONE = "None"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SessionResult":
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN

    @property
    def numeric_value(self) -> Optional[int]:
        """1/2/3 for Success/Warning/Failed, None for everything else."""
        return _RESULT_CODES.get(self)


_RESULT_CODES = {
    SessionResult.SUCCESS: 1,
    SessionResult.WARNING: 2,
    SessionResult.FAILED: 3,
}


@dataclass(frozen=True)
class BackupSession:
    id: str
    name: str
    session_type: str
    state: str
    result: SessionResult
    result_message: str
    creation_time: datetime
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.creation_time).total_seconds()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSession":
        result = _mapping(data.get("result") or {}, "result")
        end_time = data.get("endTime")
        return cls(
            id=_str(data, "id"),
            name=_str(data, "name", required=True),
            session_type=_str(data, "sessionType"),
            state=_str(data, "state"),
            result=SessionResult.parse(_str(result, "result")),
            result_message=_str(result, "message"),
            creation_time=parse_timestamp(data.get("creationTime"), "creationTime"),
            end_time=parse_timestamp(end_time, "endTime") if end_time else None,
        )


@dataclass(frozen=True)
class ManagedServer:
    id: str
    name: str
    type: str
    description: str
    status: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManagedServer":
        return cls(
            id=_str(data, "id"),
            name=_str(data, "name", required=True),
            type=_str(data, "type"),
            description=_str(data, "description"),
            status=_str(data, "status"),
        )


@dataclass(frozen=True)
class Repository:
    """Configuration view of a backup repository."""
    id: str
    name: str
    type: str
    description: str
    max_task_count: int
    per_vm_backup: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Repository":
        settings = _mapping(data.get("repository") or {}, "repository")
        advanced = _mapping(settings.get("advancedSettings") or {}, "advancedSettings")
        return cls(
            id=_str(data, "id", required=True),
            name=_str(data, "name"),
            type=_str(data, "type"),
            description=_str(data, "description"),
            max_task_count=_int(settings, "maxTaskCount"),
            per_vm_backup=_bool(advanced, "perVmBackup"),
        )


@dataclass(frozen=True)
class RepositoryState:
    """Capacity and usage view of a backup repository."""
    id: str
    name: str
    type: str
    description: str
    path: str
    capacity_gb: float
    free_gb: float
    used_space_gb: float
    is_online: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepositoryState":
        return cls(
            id=_str(data, "id", required=True),
            name=_str(data, "name"),
            type=_str(data, "type"),
            description=_str(data, "description"),
            path=_str(data, "path"),
            capacity_gb=_float(data, "capacityGB"),
            free_gb=_float(data, "freeGB"),
            used_space_gb=_float(data, "usedSpaceGB"),
            is_online=_bool(data, "isOnline"),
        )


@dataclass(frozen=True)
class Proxy:
    id: str
    name: str
    type: str
    description: str
    transport_mode: str
    max_task_count: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proxy":
        server = _mapping(data.get("server") or {}, "server")
        return cls(
            id=_str(data, "id"),
            name=_str(data, "name", required=True),
            type=_str(data, "type"),
            description=_str(data, "description"),
            transport_mode=_str(server, "transportMode"),
            max_task_count=_int(server, "maxTaskCount"),
        )


@dataclass(frozen=True)
class BackupObject:
    id: str
    name: str
    type: str
    platform_name: str
    vi_type: str
    object_id: str
    path: str
    restore_points_count: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupObject":
        return cls(
            id=_str(data, "id"),
            name=_str(data, "name", required=True),
            type=_str(data, "type"),
            platform_name=_str(data, "platformName"),
            vi_type=_str(data, "viType"),
            object_id=_str(data, "objectId"),
            path=_str(data, "path"),
            restore_points_count=_int(data, "restorePointsCount"),
        )


@dataclass(frozen=True)
class ServerInfo:
    vbr_id: str
    name: str
    build_version: str
    database_vendor: str

    @classmethod
    def from_dict(cls, data: Any) -> "ServerInfo":
        data = _mapping(data, "serverInfo")
        return cls(
            vbr_id=_str(data, "vbrId"),
            name=_str(data, "name"),
            build_version=_str(data, "buildVersion"),
            database_vendor=_str(data, "databaseVendor"),
        )


@dataclass(frozen=True)
class CycleSnapshot:
    """Everything fetched during one collection cycle."""
    sessions: Tuple[BackupSession, ...] = ()
    managed_servers: Tuple[ManagedServer, ...] = ()
    repositories: Tuple[Repository, ...] = ()
    repository_states: Tuple[RepositoryState, ...] = ()
    proxies: Tuple[Proxy, ...] = ()
    backup_objects: Tuple[BackupObject, ...] = ()

    def counts(self) -> Dict[str, int]:
        return {
            "sessions": len(self.sessions),
            "managed_servers": len(self.managed_servers),
            "repositories": len(self.repositories),
            "repository_states": len(self.repository_states),
            "proxies": len(self.proxies),
            "backup_objects": len(self.backup_objects),
        }


@dataclass
class MetricPoint:
    """A single time-series observation."""
    measurement: str
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, FieldValue] = field(default_factory=dict)
    time: Optional[datetime] = None

    def to_influx(self) -> Point:
        """Convert to an influxdb_client Point; no time means server receive time."""
        point = Point(self.measurement)
        for key, value in self.tags.items():
            point.tag(key, value)
        for key, value in self.fields.items():
            point.field(key, value)
        if self.time is not None:
            point.time(self.time, WritePrecision.NS)
        return point

