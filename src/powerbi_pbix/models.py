"""Data structures shared by the Power BI client and the deployment lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class Unconfirmed:
    """Marker for a tracked datasource value that could not be confirmed remotely."""

    _instance: Optional["Unconfirmed"] = None

    def __new__(cls) -> "Unconfirmed":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCONFIRMED"

    def __reduce__(self):
        return (Unconfirmed, ())


UNCONFIRMED = Unconfirmed()

TrackedValue = Union[str, Unconfirmed, None]


class ImportStatus(str, Enum):
    PUBLISHING = "Publishing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ImportStatus":
        for status in cls:
            if raw and status.value.lower() == raw.lower():
                return status
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in {ImportStatus.SUCCEEDED, ImportStatus.FAILED}


@dataclass(frozen=True)
class ImportJob:
    id: str
    status: ImportStatus
    name: str = ""
    report_ids: Tuple[str, ...] = ()
    dataset_ids: Tuple[str, ...] = ()
    error: Optional[str] = None
    raw_status: str = ""

    @property
    def first_report_id(self) -> Optional[str]:
        return self.report_ids[0] if self.report_ids else None

    @property
    def first_dataset_id(self) -> Optional[str]:
        return self.dataset_ids[0] if self.dataset_ids else None

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ImportJob":
        raw_status = str(data.get("importState") or "")
        return cls(
            id=str(data.get("id") or ""),
            status=ImportStatus.parse(raw_status),
            name=str(data.get("name") or ""),
            report_ids=_ids(data.get("reports")),
            dataset_ids=_ids(data.get("datasets")),
            error=_format_error(data.get("error")),
            raw_status=raw_status,
        )


@dataclass(frozen=True)
class Report:
    id: str
    dataset_id: Optional[str]
    name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Report":
        dataset_id = data.get("datasetId")
        return cls(
            id=str(data.get("id") or ""),
            dataset_id=str(dataset_id) if dataset_id else None,
            name=str(data.get("name") or ""),
        )


@dataclass(frozen=True)
class DatasetParameter:
    name: str
    current_value: Optional[str]
    type: Optional[str] = None
    is_required: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "DatasetParameter":
        current = data.get("currentValue")
        return cls(
            name=str(data.get("name") or ""),
            current_value=None if current is None else str(current),
            type=_optional_str(data.get("type")),
            is_required=bool(data.get("isRequired", False)),
        )


@dataclass(frozen=True)
class ConnectionDetails:
    server: Optional[str] = None
    database: Optional[str] = None
    url: Optional[str] = None

    def to_payload(self) -> Dict[str, str]:
        payload = {"server": self.server, "database": self.database, "url": self.url}
        return {key: value for key, value in payload.items() if value}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "ConnectionDetails":
        data = data or {}
        return cls(
            server=_optional_str(data.get("server")),
            database=_optional_str(data.get("database")),
            url=_optional_str(data.get("url")),
        )


@dataclass(frozen=True)
class Datasource:
    datasource_type: str
    connection_details: ConnectionDetails
    datasource_id: Optional[str] = None
    gateway_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Datasource":
        return cls(
            datasource_type=str(data.get("datasourceType") or ""),
            connection_details=ConnectionDetails.from_dict(data.get("connectionDetails")),  # type: ignore[arg-type]
            datasource_id=_optional_str(data.get("datasourceId")),
            gateway_id=_optional_str(data.get("gatewayId")),
        )


@dataclass(frozen=True)
class ParameterBinding:
    """A declared dataset parameter value. Only declared names are tracked."""

    name: str
    value: str


@dataclass(frozen=True)
class DatasourceRule:
    """Find-and-replace directive for a dataset datasource connection.

    Connections of ``type`` matching the ``original_*`` values get the
    non-empty target values. After a read the target fields may hold
    :data:`UNCONFIRMED` when no live connection matches them anymore.
    """

    type: str = ""
    database: TrackedValue = None
    server: TrackedValue = None
    url: TrackedValue = None
    original_database: Optional[str] = None
    original_server: Optional[str] = None
    original_url: Optional[str] = None

    def target_fields(self) -> Dict[str, TrackedValue]:
        return {"url": self.url, "server": self.server, "database": self.database}

    def is_confirmed(self) -> bool:
        return not any(value is UNCONFIRMED for value in self.target_fields().values())

    def mark_unconfirmed(self) -> "DatasourceRule":
        changes = {key: UNCONFIRMED for key, value in self.target_fields().items() if value}
        return replace(self, **changes)


@dataclass(frozen=True)
class ArtifactSpec:
    """Desired state of a deployed PBIX artifact."""

    workspace_id: str
    name: str
    source: str
    source_hash: Optional[str] = None
    skip_report: bool = False
    parameters: Tuple[ParameterBinding, ...] = ()
    datasources: Tuple[DatasourceRule, ...] = ()
    rebind_dataset_id: Optional[str] = None

    def __post_init__(self) -> None:
        missing = [key for key in ("workspace_id", "name", "source") if not getattr(self, key)]
        if missing:
            raise ValueError("Missing required artifact fields: " + ", ".join(missing))
        if self.rebind_dataset_id and (self.parameters or self.datasources):
            raise ValueError("rebind_dataset_id cannot be combined with parameters or datasources.")
        names = [parameter.name for parameter in self.parameters]
        if len(names) != len(set(names)):
            raise ValueError("Parameter names must be unique.")


@dataclass(frozen=True)
class ArtifactState:
    """Resolved observable state of a deployed PBIX artifact."""

    id: str
    workspace_id: str
    name: str
    source: str
    source_hash: Optional[str] = None
    skip_report: bool = False
    import_name: Optional[str] = None
    report_id: Optional[str] = None
    dataset_id: Optional[str] = None
    report_original_dataset_id: Optional[str] = None
    rebind_dataset_id: Optional[str] = None
    parameters: Tuple[ParameterBinding, ...] = ()
    datasources: Tuple[DatasourceRule, ...] = ()


def _ids(items: object) -> Tuple[str, ...]:
    if not isinstance(items, list):
        return ()
    ids: List[str] = []
    for item in items:
        if isinstance(item, dict) and item.get("id"):
            ids.append(str(item["id"]))
    return tuple(ids)


def _format_error(error: object) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        code = error.get("code")
        details = error.get("details") or error.get("message")
        parts = [str(part) for part in (code, details) if part]
        return ": ".join(parts) if parts else str(error)
    return str(error)


def _optional_str(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
