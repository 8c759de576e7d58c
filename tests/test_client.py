from __future__ import annotations

import io
import json

import pytest
import responses

from powerbi_pbix.client import DatasourceUpdate, PowerBIClient
from powerbi_pbix.config import PowerBIConfig
from powerbi_pbix.errors import NotFoundError, TransportError
from powerbi_pbix.models import ConnectionDetails, ImportStatus, ParameterBinding

BASE = "https://api.powerbi.example/v1.0/myorg"


def build_client() -> PowerBIClient:
    return PowerBIClient(PowerBIConfig(base_url=BASE))


@responses.activate
def test_post_import_uploads_file_and_returns_id():
    client = build_client()
    responses.add(
        responses.POST,
        f"{BASE}/groups/ws-1/imports",
        json={"id": "imp-1"},
        status=202,
    )

    job_id = client.post_import("ws-1", "Sales", "CreateOrOverwrite", False, io.BytesIO(b"pbix-bytes"))

    assert job_id == "imp-1"
    request = responses.calls[0].request
    assert "datasetDisplayName=Sales" in request.url
    assert "nameConflict=CreateOrOverwrite" in request.url
    assert "skipReport=false" in request.url
    assert b"pbix-bytes" in request.body


@responses.activate
def test_get_import_parses_reports_and_datasets():
    client = build_client()
    responses.add(
        responses.GET,
        f"{BASE}/groups/ws-1/imports/imp-1",
        json={
            "id": "imp-1",
            "importState": "Succeeded",
            "name": "Sales",
            "reports": [{"id": "R1"}, {"id": "R2"}],
            "datasets": [{"id": "D1"}],
        },
    )

    job = client.get_import("ws-1", "imp-1")

    assert job.status is ImportStatus.SUCCEEDED
    assert job.name == "Sales"
    assert job.first_report_id == "R1"
    assert job.first_dataset_id == "D1"


@responses.activate
def test_get_report_returns_bound_dataset():
    client = build_client()
    responses.add(
        responses.GET,
        f"{BASE}/groups/ws-1/reports/R1",
        json={"id": "R1", "name": "Sales", "datasetId": "D1"},
    )

    report = client.get_report("ws-1", "R1")

    assert report.dataset_id == "D1"


@responses.activate
def test_rebind_report_posts_dataset_id():
    client = build_client()
    responses.add(responses.POST, f"{BASE}/groups/ws-1/reports/R1/Rebind", status=200)

    client.rebind_report("ws-1", "R1", "D2")

    assert json.loads(responses.calls[0].request.body) == {"datasetId": "D2"}


@responses.activate
def test_update_parameters_sends_only_declared_names():
    client = build_client()
    responses.add(responses.POST, f"{BASE}/groups/ws-1/datasets/D1/Default.UpdateParameters", status=200)

    client.update_parameters("ws-1", "D1", [ParameterBinding("Env", "prod")])

    assert json.loads(responses.calls[0].request.body) == {
        "updateDetails": [{"name": "Env", "newValue": "prod"}]
    }


@responses.activate
def test_update_datasources_omits_empty_connection_fields():
    client = build_client()
    responses.add(responses.POST, f"{BASE}/groups/ws-1/datasets/D1/Default.UpdateDatasources", status=200)

    client.update_datasources(
        "ws-1",
        "D1",
        [
            DatasourceUpdate(
                datasource_type="Sql",
                selector=ConnectionDetails(server="old.example", database="db"),
                replacement=ConnectionDetails(server="new.example", database="db"),
            )
        ],
    )

    assert json.loads(responses.calls[0].request.body) == {
        "updateDetails": [
            {
                "connectionDetails": {"server": "new.example", "database": "db"},
                "datasourceSelector": {
                    "datasourceType": "Sql",
                    "connectionDetails": {"server": "old.example", "database": "db"},
                },
            }
        ]
    }


@responses.activate
def test_get_datasources_handles_missing_fields():
    client = build_client()
    responses.add(
        responses.GET,
        f"{BASE}/groups/ws-1/datasets/D1/datasources",
        json={
            "value": [
                {"datasourceType": "Sql", "connectionDetails": {"server": "srv", "database": "db"}},
                {"datasourceType": "Web", "connectionDetails": {"url": "https://feed.example"}},
            ]
        },
    )

    datasources = client.get_datasources("ws-1", "D1")

    assert [d.datasource_type for d in datasources] == ["Sql", "Web"]
    assert datasources[0].connection_details.url is None
    assert datasources[1].connection_details.url == "https://feed.example"


@responses.activate
def test_not_found_raises_not_found_error():
    client = build_client()
    responses.add(
        responses.GET,
        f"{BASE}/groups/ws-1/imports/missing",
        json={"error": {"code": "ImportNotFound"}},
        status=404,
    )

    with pytest.raises(NotFoundError) as excinfo:
        client.get_import("ws-1", "missing")

    assert excinfo.value.status_code == 404
    assert "ImportNotFound" in str(excinfo.value)


@responses.activate
def test_server_error_raises_transport_error_with_body():
    client = build_client()
    responses.add(
        responses.DELETE,
        f"{BASE}/groups/ws-1/datasets/D1",
        body="quota exceeded",
        status=403,
    )

    with pytest.raises(TransportError) as excinfo:
        client.delete_dataset("ws-1", "D1")

    assert not isinstance(excinfo.value, NotFoundError)
    assert excinfo.value.status_code == 403
    assert excinfo.value.body == "quota exceeded"
    assert len(responses.calls) == 1
