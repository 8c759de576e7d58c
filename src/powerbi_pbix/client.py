from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, Iterable, List, Optional

import requests
from requests import Response
from requests.auth import AuthBase
import urllib3
from urllib3.exceptions import InsecureRequestWarning

from .config import PowerBIConfig
from .errors import NotFoundError, TransportError
from .models import (
    ConnectionDetails,
    Datasource,
    DatasetParameter,
    ImportJob,
    ParameterBinding,
    Report,
)

LOGGER = logging.getLogger(__name__)

NAME_CONFLICT_CREATE_OR_OVERWRITE = "CreateOrOverwrite"


class PowerBIClient:
    """Client for the workspace-scoped Power BI REST endpoints used by the deployer."""

    def __init__(self, config: PowerBIConfig, auth: Optional[AuthBase] = None, session: Optional[requests.Session] = None):
        self._config = config
        self._session = session or requests.Session()
        self._session.auth = auth
        self._session.headers.update({"Accept": "application/json"})
        verify_setting: bool | str
        if config.ca_bundle_path:
            verify_setting = config.ca_bundle_path
        else:
            verify_setting = config.verify_ssl
        self._session.verify = verify_setting
        if verify_setting is False:
            urllib3.disable_warnings(InsecureRequestWarning)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "PowerBIClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def post_import(
        self,
        workspace_id: str,
        name: str,
        name_conflict: str,
        skip_report: bool,
        content: BinaryIO,
    ) -> str:
        """Upload a PBIX package and return the import id."""
        params = {
            "datasetDisplayName": name,
            "nameConflict": name_conflict,
            "skipReport": "true" if skip_report else "false",
        }
        response = self._request(
            "POST",
            f"groups/{workspace_id}/imports",
            params=params,
            files={"file": (name, content, "application/octet-stream")},
            timeout=max(self._config.request_timeout_seconds, 300),
        )
        return str(response.json()["id"])

    def get_import(self, workspace_id: str, import_id: str) -> ImportJob:
        response = self._request("GET", f"groups/{workspace_id}/imports/{import_id}")
        return ImportJob.from_dict(response.json())

    def get_report(self, workspace_id: str, report_id: str) -> Report:
        response = self._request("GET", f"groups/{workspace_id}/reports/{report_id}")
        return Report.from_dict(response.json())

    def delete_report(self, workspace_id: str, report_id: str) -> None:
        self._request("DELETE", f"groups/{workspace_id}/reports/{report_id}")

    def rebind_report(self, workspace_id: str, report_id: str, dataset_id: str) -> None:
        self._request(
            "POST",
            f"groups/{workspace_id}/reports/{report_id}/Rebind",
            json={"datasetId": dataset_id},
        )

    def take_over_report(self, workspace_id: str, report_id: str) -> None:
        self._request("POST", f"groups/{workspace_id}/reports/{report_id}/Default.TakeOver")

    def delete_dataset(self, workspace_id: str, dataset_id: str) -> None:
        self._request("DELETE", f"groups/{workspace_id}/datasets/{dataset_id}")

    def take_over_dataset(self, workspace_id: str, dataset_id: str) -> None:
        self._request("POST", f"groups/{workspace_id}/datasets/{dataset_id}/Default.TakeOver")

    def get_parameters(self, workspace_id: str, dataset_id: str) -> List[DatasetParameter]:
        response = self._request("GET", f"groups/{workspace_id}/datasets/{dataset_id}/parameters")
        return [DatasetParameter.from_dict(item) for item in _value_list(response)]

    def update_parameters(self, workspace_id: str, dataset_id: str, parameters: Iterable[ParameterBinding]) -> None:
        payload = {
            "updateDetails": [{"name": parameter.name, "newValue": parameter.value} for parameter in parameters]
        }
        self._request(
            "POST",
            f"groups/{workspace_id}/datasets/{dataset_id}/Default.UpdateParameters",
            json=payload,
        )

    def get_datasources(self, workspace_id: str, dataset_id: str) -> List[Datasource]:
        response = self._request("GET", f"groups/{workspace_id}/datasets/{dataset_id}/datasources")
        return [Datasource.from_dict(item) for item in _value_list(response)]

    def update_datasources(self, workspace_id: str, dataset_id: str, updates: Iterable[DatasourceUpdate]) -> None:
        payload = {"updateDetails": [update.to_payload() for update in updates]}
        self._request(
            "POST",
            f"groups/{workspace_id}/datasets/{dataset_id}/Default.UpdateDatasources",
            json=payload,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Response:
        kwargs.setdefault("timeout", self._config.request_timeout_seconds)
        url = self._build_url(path)
        LOGGER.debug("%s %s", method, url)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        raise_for_status(response)
        return response

    def _build_url(self, path: str) -> str:
        base = self._config.base_url.rstrip("/")
        return f"{base}/{path.lstrip('/')}"


@dataclass(frozen=True)
class DatasourceUpdate:
    """A single find-and-replace entry of an UpdateDatasources request."""

    datasource_type: str
    selector: ConnectionDetails
    replacement: ConnectionDetails

    def to_payload(self) -> Dict[str, Any]:
        return {
            "connectionDetails": self.replacement.to_payload(),
            "datasourceSelector": {
                "datasourceType": self.datasource_type,
                "connectionDetails": self.selector.to_payload(),
            },
        }


def _value_list(response: Response) -> List[Dict[str, Any]]:
    payload = response.json()
    items = payload.get("value", []) if isinstance(payload, dict) else []
    return [item for item in items if isinstance(item, dict)]


def raise_for_status(response: Response) -> None:
    """Raise :class:`TransportError` (or :class:`NotFoundError`) for non-2xx responses."""
    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        body = (response.text or "").strip()
        message = f"{exc}"
        if body:
            snippet = body if len(body) < 512 else f"{body[:512]}..."
            message = f"{message}; response body: {snippet}"
        error_cls = NotFoundError if response.status_code == 404 else TransportError
        raise error_cls(message, status_code=response.status_code, body=body) from exc
