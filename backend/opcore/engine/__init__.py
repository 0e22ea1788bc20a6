"""Operation Engine - State machines, authorization, reconciliation and trails"""
from .state_machine import (
    StateMachine,
    OPERATION_MACHINE,
    INVITE_MACHINE,
    JOIN_REQUEST_MACHINE,
    ASSIGNMENT_MACHINE,
    effective_status,
    with_effective_status,
    is_effectively_pending,
)
from .permission_guard import PermissionGuard
from .reconciler import Reconciler, ChangeSet, diff_snapshot, plan_changes
from .trail_buffer import TrailBuffer

__all__ = [
    "StateMachine",
    "OPERATION_MACHINE",
    "INVITE_MACHINE",
    "JOIN_REQUEST_MACHINE",
    "ASSIGNMENT_MACHINE",
    "effective_status",
    "with_effective_status",
    "is_effectively_pending",
    "PermissionGuard",
    "Reconciler",
    "ChangeSet",
    "diff_snapshot",
    "plan_changes",
    "TrailBuffer",
]
