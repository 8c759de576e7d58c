from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from .models import UNCONFIRMED, ArtifactState, DatasourceRule, ParameterBinding, Unconfirmed

STATE_FORMAT_VERSION = 1
"""
Layout of the JSON state file:

{
  "version": 1,
  "artifacts": {
    "<key>": {"id": "...", "workspace_id": "...", "name": "...", ...,
              "datasources": [{"type": "sql", "server": {"unconfirmed": true}, ...}]}
  }
}
"""


class StateStore:
    """Persistence interface for the tracked state of deployed artifacts."""

    def get(self, key: str) -> Optional[ArtifactState]:
        raise NotImplementedError

    def put(self, key: str, state: ArtifactState) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """State store used for unit tests and one-off runs."""

    def __init__(self, initial: Optional[Dict[str, ArtifactState]] = None):
        self._records: Dict[str, ArtifactState] = dict(initial) if initial else {}

    def get(self, key: str) -> Optional[ArtifactState]:
        return self._records.get(key)

    def put(self, key: str, state: ArtifactState) -> None:
        self._records[key] = state

    def remove(self, key: str) -> None:
        self._records.pop(key, None)


class JsonFileStateStore(StateStore):
    """Keeps artifact state in a local JSON file, rewritten atomically on each change."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def get(self, key: str) -> Optional[ArtifactState]:
        record = self._load().get(key)
        return state_from_dict(record) if record else None

    def put(self, key: str, state: ArtifactState) -> None:
        records = self._load()
        records[key] = state_to_dict(state)
        self._write(records)

    def remove(self, key: str) -> None:
        records = self._load()
        if records.pop(key, None) is not None:
            self._write(records)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            return {}
        payload = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        version = payload.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise ValueError(f"Unsupported state file version {version} in {self._path}")
        return dict(payload.get("artifacts", {}))

    def _write(self, records: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": STATE_FORMAT_VERSION, "artifacts": records}
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


def state_to_dict(state: ArtifactState) -> Dict[str, Any]:
    data = asdict(state)
    data["parameters"] = [asdict(parameter) for parameter in state.parameters]
    data["datasources"] = [
        {key: _encode_value(value) for key, value in asdict(rule).items()} for rule in state.datasources
    ]
    return data


def state_from_dict(data: Dict[str, Any]) -> ArtifactState:
    values = dict(data)
    values["parameters"] = tuple(ParameterBinding(**item) for item in values.get("parameters") or [])
    values["datasources"] = tuple(
        DatasourceRule(**{key: _decode_value(value) for key, value in item.items()})
        for item in values.get("datasources") or []
    )
    return ArtifactState(**values)


def _encode_value(value: Any) -> Any:
    if isinstance(value, Unconfirmed):
        return {"unconfirmed": True}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and value.get("unconfirmed"):
        return UNCONFIRMED
    return value
