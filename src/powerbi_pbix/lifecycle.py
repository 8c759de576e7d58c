"""Create, read, update and delete a deployed PBIX artifact.

Each operation runs its steps strictly in sequence on the calling thread.
A failing step aborts the operation without rolling back earlier steps;
re-running the operation with the same desired state is safe.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from .binding import BindingTracker
from .client import PowerBIClient
from .errors import NotFoundError
from .imports import ImportStateMachine
from .models import ArtifactSpec, ArtifactState, ImportJob
from .reconcile import DatasourceReconciler, ParameterReconciler

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5 * 60


class PBIXDeployer:
    """Reconciles a declared PBIX artifact against its import, report and dataset."""

    def __init__(
        self,
        client: PowerBIClient,
        imports: Optional[ImportStateMachine] = None,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._client = client
        self._imports = imports or ImportStateMachine(client)
        self._default_timeout = default_timeout_seconds

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PBIXDeployer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def create_artifact(self, spec: ArtifactSpec, timeout_seconds: Optional[float] = None) -> ArtifactState:
        """Import the PBIX, capture its report/dataset and apply the declared configuration."""
        timeout = self._timeout(timeout_seconds)
        job_id = self._submit(spec)
        job = self._imports.await_terminal(spec.workspace_id, job_id, timeout)

        tracker = BindingTracker(self._client, spec.workspace_id)
        report_id = job.first_report_id
        # captured once here; later imports may leave the report rebound
        original_dataset_id = tracker.capture_original_binding(report_id) if report_id else None
        state = ArtifactState(
            id=job_id,
            workspace_id=spec.workspace_id,
            name=spec.name,
            import_name=job.name or None,
            source=spec.source,
            source_hash=spec.source_hash,
            skip_report=spec.skip_report,
            report_id=report_id,
            dataset_id=job.first_dataset_id,
            report_original_dataset_id=original_dataset_id,
        )

        self._parameters(spec).push(state.dataset_id, spec.parameters)
        state = replace(state, parameters=spec.parameters)
        self._datasources(spec).push(state.dataset_id, spec.datasources)
        state = replace(state, datasources=spec.datasources)
        tracker.rebind(state.report_id, spec.rebind_dataset_id)
        state = replace(state, rebind_dataset_id=spec.rebind_dataset_id)
        LOGGER.info("Created PBIX '%s' (report=%s, dataset=%s)", state.name, state.report_id, state.dataset_id)
        return state

    def read_artifact(self, state: ArtifactState, timeout_seconds: Optional[float] = None) -> Optional[ArtifactState]:
        """Refresh tracked values from the service. Returns None when the artifact is gone."""
        timeout = self._timeout(timeout_seconds)
        try:
            job = self._imports.await_terminal(state.workspace_id, state.id, timeout)
        except NotFoundError:
            LOGGER.info("Import %s no longer exists; treating PBIX '%s' as deleted", state.id, state.name)
            return None
        state = self._apply_import_name(state, job)
        try:
            parameters = ParameterReconciler(self._client, state.workspace_id).pull(state.dataset_id, state.parameters)
            datasources = DatasourceReconciler(self._client, state.workspace_id).pull(state.dataset_id, state.datasources)
        except NotFoundError:
            LOGGER.info("Dataset %s no longer exists; treating PBIX '%s' as deleted", state.dataset_id, state.name)
            return None
        return replace(state, parameters=parameters, datasources=datasources)

    def update_artifact(
        self,
        state: ArtifactState,
        spec: ArtifactSpec,
        timeout_seconds: Optional[float] = None,
    ) -> ArtifactState:
        """Move an existing artifact to the desired state.

        Content changes (source, source hash or datasource rules) re-import the
        package, bracketed by unbind and rebind. Otherwise only the binding and
        parameters are adjusted in place.
        """
        if spec.workspace_id != state.workspace_id or spec.name != state.name:
            raise ValueError("Changing workspace_id or name requires replacing the artifact.")
        timeout = self._timeout(timeout_seconds)
        self._take_over(state)

        tracker = BindingTracker(self._client, state.workspace_id)
        rebind_changed = spec.rebind_dataset_id != state.rebind_dataset_id
        rebind_declared = bool(spec.rebind_dataset_id)

        if _content_changed(state, spec):
            tracker.unbind(state.report_id, state.report_original_dataset_id, rebind_declared, rebind_changed)
            job_id = self._submit(spec)
            state = replace(state, id=job_id, source=spec.source, source_hash=spec.source_hash)
            job = self._imports.await_terminal(state.workspace_id, job_id, timeout)
            state = self._apply_import_name(state, job)
            self._parameters(spec).push(state.dataset_id, spec.parameters)
            state = replace(state, parameters=spec.parameters)
            self._datasources(spec).push(state.dataset_id, spec.datasources)
            state = replace(state, datasources=spec.datasources)
            tracker.rebind(state.report_id, spec.rebind_dataset_id)
            return replace(state, rebind_dataset_id=spec.rebind_dataset_id, skip_report=spec.skip_report)

        if rebind_changed:
            tracker.unbind(state.report_id, state.report_original_dataset_id, rebind_declared, rebind_changed)
            tracker.rebind(state.report_id, spec.rebind_dataset_id)
            state = replace(state, rebind_dataset_id=spec.rebind_dataset_id)

        if set(spec.parameters) != set(state.parameters):
            self._parameters(spec).push(state.dataset_id, spec.parameters)
            state = replace(state, parameters=spec.parameters)

        return replace(state, skip_report=spec.skip_report)

    def delete_artifact(self, state: ArtifactState) -> None:
        """Delete the report and dataset produced by the import.

        Resources already removed outside the deployer count as deleted.
        """
        try:
            self._take_over(state)
        except NotFoundError:
            LOGGER.info("Resources of PBIX '%s' already gone; skipping takeover", state.name)
        if state.report_id:
            LOGGER.info("Deleting report %s", state.report_id)
            try:
                self._client.delete_report(state.workspace_id, state.report_id)
            except NotFoundError:
                LOGGER.info("Report %s already deleted", state.report_id)
        if state.dataset_id:
            LOGGER.info("Deleting dataset %s", state.dataset_id)
            try:
                self._client.delete_dataset(state.workspace_id, state.dataset_id)
            except NotFoundError:
                LOGGER.info("Dataset %s already deleted", state.dataset_id)

    def _submit(self, spec: ArtifactSpec) -> str:
        with open(spec.source, "rb") as content:
            return self._imports.submit(spec.workspace_id, spec.name, spec.skip_report, content)

    def _take_over(self, state: ArtifactState) -> None:
        if state.dataset_id:
            self._client.take_over_dataset(state.workspace_id, state.dataset_id)
        elif state.report_id:
            self._client.take_over_report(state.workspace_id, state.report_id)

    def _parameters(self, spec: ArtifactSpec) -> ParameterReconciler:
        return ParameterReconciler(self._client, spec.workspace_id)

    def _datasources(self, spec: ArtifactSpec) -> DatasourceReconciler:
        return DatasourceReconciler(self._client, spec.workspace_id)

    def _timeout(self, timeout_seconds: Optional[float]) -> float:
        return self._default_timeout if timeout_seconds is None else timeout_seconds

    @staticmethod
    def _apply_import_name(state: ArtifactState, job: ImportJob) -> ArtifactState:
        return replace(state, import_name=job.name) if job.name else state


def _content_changed(state: ArtifactState, spec: ArtifactSpec) -> bool:
    return (
        spec.source != state.source
        or spec.source_hash != state.source_hash
        or set(spec.datasources) != set(state.datasources)
    )
