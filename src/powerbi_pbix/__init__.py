"""Deploy PBIX reports and datasets to Power BI workspaces and keep them reconciled."""

from __future__ import annotations

from .errors import (
    AuthError,
    ImportFailedError,
    ImportTimeoutError,
    InvalidStateError,
    NotFoundError,
    PowerBIError,
    TransportError,
)
from .lifecycle import PBIXDeployer
from .models import UNCONFIRMED, ArtifactSpec, ArtifactState, DatasourceRule, ParameterBinding

__all__ = [
    "UNCONFIRMED",
    "ArtifactSpec",
    "ArtifactState",
    "AuthError",
    "DatasourceRule",
    "ImportFailedError",
    "ImportTimeoutError",
    "InvalidStateError",
    "NotFoundError",
    "PBIXDeployer",
    "ParameterBinding",
    "PowerBIError",
    "TransportError",
]
