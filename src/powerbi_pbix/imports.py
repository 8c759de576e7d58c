from __future__ import annotations

import logging
import time
from typing import BinaryIO, Callable, Protocol

from tenacity import RetryCallState, RetryError, Retrying, before_sleep_log, retry_if_result

from .client import NAME_CONFLICT_CREATE_OR_OVERWRITE
from .errors import ImportFailedError, ImportTimeoutError
from .models import ImportJob, ImportStatus

LOGGER = logging.getLogger(__name__)


class ImportsAdapter(Protocol):
    def post_import(self, workspace_id: str, name: str, name_conflict: str, skip_report: bool, content: BinaryIO) -> str:
        ...

    def get_import(self, workspace_id: str, import_id: str) -> ImportJob:
        ...


class ImportStateMachine:
    """Drives a PBIX import from submission to Succeeded or Failed."""

    def __init__(
        self,
        client: ImportsAdapter,
        poll_interval_seconds: float = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive.")
        self._client = client
        self._poll_interval = poll_interval_seconds
        self._clock = clock
        self._sleep = sleep

    def submit(
        self,
        workspace_id: str,
        name: str,
        skip_report: bool,
        content: BinaryIO,
        name_conflict: str = NAME_CONFLICT_CREATE_OR_OVERWRITE,
    ) -> str:
        """Upload the package and return the import job id."""
        job_id = self._client.post_import(workspace_id, name, name_conflict, skip_report, content)
        LOGGER.info("Submitted import %s for '%s' in workspace %s", job_id, name, workspace_id)
        return job_id

    def await_terminal(self, workspace_id: str, job_id: str, timeout_seconds: float) -> ImportJob:
        """Poll the import until it reaches a terminal state or the deadline passes.

        Raises:
            ImportTimeoutError: the import was still running at the deadline. The
                remote import is not cancelled.
            ImportFailedError: the import resolved to Failed.
        """
        deadline = self._clock() + timeout_seconds

        def deadline_passed(retry_state: RetryCallState) -> bool:
            return self._clock() >= deadline

        def remaining_interval(retry_state: RetryCallState) -> float:
            return max(0.0, min(self._poll_interval, deadline - self._clock()))

        retrying = Retrying(
            retry=retry_if_result(lambda job: not job.status.is_terminal),
            stop=deadline_passed,
            wait=remaining_interval,
            sleep=self._sleep,
            before_sleep=before_sleep_log(LOGGER, logging.DEBUG),
        )
        try:
            job = retrying(self._poll, workspace_id, job_id)
        except RetryError as exc:
            last = exc.last_attempt.result()
            raise ImportTimeoutError(job_id, timeout_seconds, last.raw_status or last.status.value) from exc

        if job.status is ImportStatus.FAILED:
            raise ImportFailedError(job_id, job.error or "no failure detail returned")
        LOGGER.info(
            "Import %s succeeded (reports=%s, datasets=%s)",
            job_id,
            list(job.report_ids),
            list(job.dataset_ids),
        )
        return job

    def _poll(self, workspace_id: str, job_id: str) -> ImportJob:
        job = self._client.get_import(workspace_id, job_id)
        LOGGER.debug("Import %s state: %s", job_id, job.raw_status or job.status.value)
        return job
