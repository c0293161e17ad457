"""Headscale Kubernetes Driver - cluster access, pod exec and reconciliation."""

from .cluster import ClusterConnection
from .custom import CustomObjectClient
from .exceptions import DriverError, ExecChannelError
from .exec import PodExecutor, classify_exec_status
from .models import (
    EventKind,
    ExecFailure,
    ExecIndeterminate,
    ExecOutcome,
    ExecSuccess,
    ObjectKey,
    ResourceKind,
    WatchEvent,
)
from .resources import ResourceManager
from .watch import DispatchTable, Handler, ReconciliationDriver, Registration, ResourceWatcher

__version__ = "0.1.0"

__all__ = [
    # Cluster access
    "ClusterConnection",
    "CustomObjectClient",
    "ResourceManager",
    # Remote execution
    "PodExecutor",
    "classify_exec_status",
    "ExecOutcome",
    "ExecSuccess",
    "ExecFailure",
    "ExecIndeterminate",
    # Watch and reconciliation
    "ResourceWatcher",
    "ReconciliationDriver",
    "Registration",
    "DispatchTable",
    "Handler",
    # Models
    "EventKind",
    "ObjectKey",
    "ResourceKind",
    "WatchEvent",
    # Errors
    "DriverError",
    "ExecChannelError",
]
