from __future__ import annotations

import pytest

from powerbi_pbix.errors import InvalidStateError
from powerbi_pbix.models import (
    UNCONFIRMED,
    ConnectionDetails,
    Datasource,
    DatasetParameter,
    DatasourceRule,
    ParameterBinding,
)
from powerbi_pbix.reconcile import DatasourceReconciler, ParameterReconciler, rule_matches


def test_parameter_push_sends_single_batch_of_declared_parameters():
    client = StubDatasetClient()
    reconciler = ParameterReconciler(client, "ws-1")
    desired = (ParameterBinding("Env", "prod"), ParameterBinding("Region", "eu"))

    reconciler.push("D1", desired)

    assert client.parameter_updates == [("D1", list(desired))]


def test_parameter_push_without_dataset_raises():
    reconciler = ParameterReconciler(StubDatasetClient(), "ws-1")

    with pytest.raises(InvalidStateError):
        reconciler.push(None, (ParameterBinding("Env", "prod"),))


def test_parameter_push_with_nothing_declared_is_noop():
    client = StubDatasetClient()

    ParameterReconciler(client, "ws-1").push(None, ())

    assert client.parameter_updates == []


def test_parameter_pull_keeps_untracked_and_missing_names():
    client = StubDatasetClient(parameters=[DatasetParameter("A", "1"), DatasetParameter("C", "3")])
    reconciler = ParameterReconciler(client, "ws-1")

    pulled = reconciler.pull("D1", (ParameterBinding("A", "0"), ParameterBinding("B", "keep")))

    assert pulled == (ParameterBinding("A", "1"), ParameterBinding("B", "keep"))


def test_parameter_pull_without_dataset_returns_tracked():
    tracked = (ParameterBinding("A", "0"),)
    client = StubDatasetClient()

    assert ParameterReconciler(client, "ws-1").pull(None, tracked) == tracked
    assert client.reads == 0


def test_datasource_push_builds_find_and_replace_request():
    client = StubDatasetClient()
    rule = DatasourceRule(type="Sql", server="new", database="db", original_server="old", original_database="db")

    DatasourceReconciler(client, "ws-1").push("D1", (rule,))

    dataset_id, updates = client.datasource_updates[0]
    assert dataset_id == "D1"
    assert updates[0].to_payload() == {
        "connectionDetails": {"server": "new", "database": "db"},
        "datasourceSelector": {
            "datasourceType": "Sql",
            "connectionDetails": {"server": "old", "database": "db"},
        },
    }


def test_datasource_push_without_dataset_raises():
    with pytest.raises(InvalidStateError):
        DatasourceReconciler(StubDatasetClient(), "ws-1").push(None, (DatasourceRule(type="Sql", server="x"),))


def test_datasource_pull_confirms_rule_matching_any_connection():
    client = StubDatasetClient(
        datasources=[
            Datasource("Sql", ConnectionDetails(server="other", database="x")),
            Datasource("Sql", ConnectionDetails(server="new", database="db")),
        ]
    )
    rule = DatasourceRule(type="Sql", server="new", database="db", original_server="old")

    pulled = DatasourceReconciler(client, "ws-1").pull("D1", (rule,))

    assert pulled == (rule,)
    assert pulled[0].is_confirmed()


def test_datasource_pull_masks_drift_as_unconfirmed():
    client = StubDatasetClient(datasources=[Datasource("Sql", ConnectionDetails(server="old", database="other"))])
    rule = DatasourceRule(type="Sql", server="old", database="db")

    (pulled,) = DatasourceReconciler(client, "ws-1").pull("D1", (rule,))

    assert pulled.server is UNCONFIRMED
    assert pulled.database is UNCONFIRMED
    assert pulled.url is None
    assert not pulled.is_confirmed()


def test_datasource_pull_without_dataset_returns_tracked():
    tracked = (DatasourceRule(type="Sql", server="s"),)

    assert DatasourceReconciler(StubDatasetClient(), "ws-1").pull(None, tracked) == tracked


def test_rule_with_empty_targets_matches_anything():
    assert rule_matches(DatasourceRule(type="Web"), ConnectionDetails(url="https://x"))


def test_rule_does_not_match_connection_missing_field():
    assert not rule_matches(DatasourceRule(type="Web", url="https://x"), ConnectionDetails(server="s"))


class StubDatasetClient:
    def __init__(self, parameters=None, datasources=None):
        self._parameters = list(parameters or [])
        self._datasources = list(datasources or [])
        self.parameter_updates = []
        self.datasource_updates = []
        self.reads = 0

    def get_parameters(self, workspace_id, dataset_id):
        self.reads += 1
        return list(self._parameters)

    def update_parameters(self, workspace_id, dataset_id, parameters):
        self.parameter_updates.append((dataset_id, list(parameters)))

    def get_datasources(self, workspace_id, dataset_id):
        self.reads += 1
        return list(self._datasources)

    def update_datasources(self, workspace_id, dataset_id, updates):
        self.datasource_updates.append((dataset_id, list(updates)))
