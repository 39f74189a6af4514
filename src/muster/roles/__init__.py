"""Muster role machines.

- pulling: Cooperative pulling guarded by a team-wide role lease
- rotation: Strict turn-taking of one shared action
- capture: Capture and recapture of a subordinate unit
- support: Shared heals, buffs and utility actions under leases
"""

from .capture import (
    CaptureControlLoop,
    CapturePhase,
    Captured,
    LossDetected,
    NoCapture,
    PendingRecapture,
)
from .pulling import (
    PULL_LEASE_TYPE,
    Abandoning,
    Acquired,
    Claiming,
    Idle,
    PullPhase,
    TaskClaimStateMachine,
    TaskState,
)
from .rotation import FireRecord, RotationScheduler, RotationState
from .support import BUFF_LEASE_TYPE, HEAL_LEASE_TYPE, UTILITY_LEASE_TYPE, SupportRole

__all__ = [
    # Pulling
    "TaskClaimStateMachine",
    "TaskState",
    "PullPhase",
    "Idle",
    "Claiming",
    "Acquired",
    "Abandoning",
    "PULL_LEASE_TYPE",
    # Rotation
    "RotationScheduler",
    "RotationState",
    "FireRecord",
    # Capture
    "CaptureControlLoop",
    "CapturePhase",
    "NoCapture",
    "Captured",
    "LossDetected",
    "PendingRecapture",
    # Support
    "SupportRole",
    "HEAL_LEASE_TYPE",
    "BUFF_LEASE_TYPE",
    "UTILITY_LEASE_TYPE",
]
