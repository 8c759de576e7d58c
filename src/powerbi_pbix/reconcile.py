from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Protocol, Tuple

from .client import DatasourceUpdate
from .errors import InvalidStateError
from .models import (
    ConnectionDetails,
    Datasource,
    DatasetParameter,
    DatasourceRule,
    ParameterBinding,
    Unconfirmed,
)

LOGGER = logging.getLogger(__name__)


class DatasetAdapter(Protocol):
    def get_parameters(self, workspace_id: str, dataset_id: str) -> List[DatasetParameter]:
        ...

    def update_parameters(self, workspace_id: str, dataset_id: str, parameters: Iterable[ParameterBinding]) -> None:
        ...

    def get_datasources(self, workspace_id: str, dataset_id: str) -> List[Datasource]:
        ...

    def update_datasources(self, workspace_id: str, dataset_id: str, updates: Iterable[DatasourceUpdate]) -> None:
        ...


class ParameterReconciler:
    """Pushes declared dataset parameters and reads back their current values."""

    def __init__(self, client: DatasetAdapter, workspace_id: str):
        self._client = client
        self._workspace_id = workspace_id

    def push(self, dataset_id: Optional[str], desired: Tuple[ParameterBinding, ...]) -> None:
        if not desired:
            return
        if not dataset_id:
            raise InvalidStateError("Unable to update parameters on a PBIX file that does not contain a dataset.")
        LOGGER.info("Updating %d parameter(s) on dataset %s", len(desired), dataset_id)
        self._client.update_parameters(self._workspace_id, dataset_id, desired)

    def pull(self, dataset_id: Optional[str], tracked: Tuple[ParameterBinding, ...]) -> Tuple[ParameterBinding, ...]:
        if not dataset_id:
            return tracked
        remote = {parameter.name: parameter for parameter in self._client.get_parameters(self._workspace_id, dataset_id)}
        updated = []
        for binding in tracked:
            match = remote.get(binding.name)
            if match is None:
                updated.append(binding)
                continue
            updated.append(replace(binding, value=match.current_value if match.current_value is not None else ""))
        return tuple(updated)


class DatasourceReconciler:
    """Applies datasource find-and-replace rules and checks whether they still hold.

    The remote API does not say which connection a rule replaced, so a read can
    only confirm that some live connection carries the rule's target values.
    """

    def __init__(self, client: DatasetAdapter, workspace_id: str):
        self._client = client
        self._workspace_id = workspace_id

    def push(self, dataset_id: Optional[str], rules: Tuple[DatasourceRule, ...]) -> None:
        if not rules:
            return
        if not dataset_id:
            raise InvalidStateError("Unable to update datasources on a PBIX file that does not contain a dataset.")
        updates = [_to_update(rule) for rule in rules]
        LOGGER.info("Updating %d datasource rule(s) on dataset %s", len(updates), dataset_id)
        self._client.update_datasources(self._workspace_id, dataset_id, updates)

    def pull(self, dataset_id: Optional[str], tracked: Tuple[DatasourceRule, ...]) -> Tuple[DatasourceRule, ...]:
        if not dataset_id:
            return tracked
        live = self._client.get_datasources(self._workspace_id, dataset_id)
        updated = []
        for rule in tracked:
            if any(rule_matches(rule, datasource.connection_details) for datasource in live):
                updated.append(rule)
                continue
            LOGGER.warning(
                "No datasource on dataset %s matches rule for type '%s'; marking values unconfirmed",
                dataset_id,
                rule.type,
            )
            updated.append(rule.mark_unconfirmed())
        return tuple(updated)


def rule_matches(rule: DatasourceRule, details: ConnectionDetails) -> bool:
    """True when every non-empty target field of the rule equals the connection's value."""
    for key, expected in rule.target_fields().items():
        if not expected:
            continue
        if isinstance(expected, Unconfirmed):
            return False
        if getattr(details, key) != expected:
            return False
    return True


def _to_update(rule: DatasourceRule) -> DatasourceUpdate:
    targets = {}
    for key, value in rule.target_fields().items():
        if isinstance(value, Unconfirmed):
            raise InvalidStateError(f"Datasource rule for type '{rule.type}' has unconfirmed value for {key}.")
        targets[key] = value or None
    return DatasourceUpdate(
        datasource_type=rule.type,
        selector=ConnectionDetails(
            server=rule.original_server or None,
            database=rule.original_database or None,
            url=rule.original_url or None,
        ),
        replacement=ConnectionDetails(**targets),
    )
