"""Report-to-dataset binding tracking.

An import over an existing report ignores any manual rebind and leaves the
report on whatever dataset the import produced. Updates that re-upload content
therefore unbind (restore the original dataset) first, reimport, and rebind
last so the declared target is reasserted after the import.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .models import Report

LOGGER = logging.getLogger(__name__)


class ReportsAdapter(Protocol):
    def get_report(self, workspace_id: str, report_id: str) -> Report:
        ...

    def rebind_report(self, workspace_id: str, report_id: str, dataset_id: str) -> None:
        ...


class BindingTracker:
    def __init__(self, client: ReportsAdapter, workspace_id: str):
        self._client = client
        self._workspace_id = workspace_id

    def capture_original_binding(self, report_id: str) -> Optional[str]:
        """Return the dataset the freshly imported report points at."""
        report = self._client.get_report(self._workspace_id, report_id)
        LOGGER.debug("Report %s originally bound to dataset %s", report_id, report.dataset_id)
        return report.dataset_id

    def rebind(self, report_id: Optional[str], target_dataset_id: Optional[str]) -> bool:
        """Point the report at the target dataset. Returns False when there is nothing to do."""
        if not report_id or not target_dataset_id:
            return False
        LOGGER.info("Rebinding report %s to dataset %s", report_id, target_dataset_id)
        self._client.rebind_report(self._workspace_id, report_id, target_dataset_id)
        return True

    def unbind(
        self,
        report_id: Optional[str],
        original_dataset_id: Optional[str],
        rebind_declared: bool,
        rebind_changed: bool,
    ) -> bool:
        """Point the report back at its original dataset when it may be rebound.

        The report may be rebound when a rebind target is declared now or the
        declared target just changed. Returns False when no call was issued.
        """
        if not (rebind_declared or rebind_changed):
            return False
        if not report_id or not original_dataset_id:
            return False
        LOGGER.info("Unbinding report %s back to original dataset %s", report_id, original_dataset_id)
        self._client.rebind_report(self._workspace_id, report_id, original_dataset_id)
        return True
