"""Per-kind reconcilers and the dispatch table built from them."""

from typing import Optional

from headscale_k8s import ClusterConnection, DispatchTable, Registration

from ..config import Settings
from .base import AdminFactory, Reconciler
from .headscale import HeadscaleReconciler
from .policy import PolicyReconciler
from .preauth_key import PreauthKeyReconciler
from .user import UserReconciler

RECONCILERS: tuple[type[Reconciler], ...] = (
    HeadscaleReconciler,
    UserReconciler,
    PreauthKeyReconciler,
    PolicyReconciler,
)


def build_reconcilers(
    cluster: ClusterConnection,
    settings: Settings,
    admin_factory: Optional[AdminFactory] = None,
) -> list[Reconciler]:
    return [cls(cluster, settings, admin_factory) for cls in RECONCILERS]


def build_dispatch_table(reconcilers: list[Reconciler]) -> tuple[list[Registration], DispatchTable]:
    """
    Build the driver's registrations and its (kind, event) -> handler table.

    Args:
        reconcilers: Reconciler instances

    Returns:
        Tuple of (registrations, dispatch table)
    """
    registrations = []
    table: DispatchTable = {}
    for reconciler in reconcilers:
        registrations.append(reconciler.registration())
        table.update(reconciler.handlers())
    return registrations, table


__all__ = [
    "AdminFactory",
    "Reconciler",
    "HeadscaleReconciler",
    "UserReconciler",
    "PreauthKeyReconciler",
    "PolicyReconciler",
    "build_reconcilers",
    "build_dispatch_table",
]
