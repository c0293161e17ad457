"""Kubernetes driver models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Reconciliation event kind."""

    APPLY = "apply"
    DELETE = "delete"


@dataclass(frozen=True)
class ResourceKind:
    """Identifies a namespaced custom resource type."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        """Get the apiVersion string (group/version)."""
        return f"{self.group}/{self.version}"


@dataclass(frozen=True)
class ObjectKey:
    """Identity of a single object of a custom resource type."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class WatchEvent(BaseModel):
    """Kubernetes watch event."""

    event_type: str  # ADDED, MODIFIED, DELETED, ERROR
    resource_type: str
    name: str
    namespace: str
    object: dict[str, Any]
    timestamp: datetime = Field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class ExecSuccess:
    """The remote process exited with status 0."""

    stdout: str


@dataclass(frozen=True)
class ExecFailure:
    """The remote process exited with a non-zero status."""

    exit_code: int
    stderr: str


@dataclass(frozen=True)
class ExecIndeterminate:
    """The completion status of the remote process could not be classified."""

    message: str


ExecOutcome = Union[ExecSuccess, ExecFailure, ExecIndeterminate]
