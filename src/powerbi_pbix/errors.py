"""Error types raised by the Power BI deployer."""

from __future__ import annotations

from typing import Optional


class PowerBIError(RuntimeError):
    """Base class for deployer failures."""


class TransportError(PowerBIError):
    """Raised when a Power BI or token endpoint call fails or returns non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(TransportError):
    """Raised when the remote resource no longer exists (HTTP 404)."""


class AuthError(PowerBIError):
    """Raised when a bearer token cannot be obtained."""


class ImportTimeoutError(PowerBIError, TimeoutError):
    """Raised when an import does not reach a terminal state before its deadline."""

    def __init__(self, job_id: str, timeout_seconds: float, last_status: str):
        super().__init__(
            f"Import {job_id} did not finish within {timeout_seconds:g}s (last status: {last_status})."
        )
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        self.last_status = last_status


class ImportFailedError(PowerBIError):
    """Raised when an import resolves to the Failed state."""

    def __init__(self, job_id: str, detail: str):
        super().__init__(f"Import {job_id} failed: {detail}")
        self.job_id = job_id
        self.detail = detail


class InvalidStateError(PowerBIError):
    """Raised when parameters or datasources are declared for an artifact without a dataset."""


__all__ = [
    "AuthError",
    "ImportFailedError",
    "ImportTimeoutError",
    "InvalidStateError",
    "NotFoundError",
    "PowerBIError",
    "TransportError",
]
