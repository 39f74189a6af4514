"""Core types and data models for Muster."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================


class PullStatus(str, Enum):
    """Progress of a cooperative pull as advertised to peers."""

    IDLE = "idle"
    PULLING = "pulling"
    RETURNING = "returning"


class CommandType(str, Enum):
    """Commands accepted by the control surface."""

    HELP = "help"
    PAUSE = "pause"
    RESUME = "resume"
    SAVE = "save"
    CAMP = "camp"
    PULL = "pull"
    ROTATION = "rotation"
    CAPTURE = "capture"
    SUPPORT = "support"
    STATUS = "status"


# =============================================================================
# Geometry
# =============================================================================


class Location(BaseModel):
    """A point in the world, used for the camp anchor."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def planar_distance(self, x: float, y: float) -> float:
        """Distance on the horizontal plane, ignoring height."""
        return ((x - self.x) ** 2 + (y - self.y) ** 2) ** 0.5


# =============================================================================
# Presence
# =============================================================================


class Vitals(BaseModel):
    """Resource percentages an agent advertises to its peers."""

    hp: float = 100.0
    mana: float = 0.0
    endurance: float = 0.0
    in_combat: bool = False


class PresenceEntry(BaseModel):
    """Liveness and status record for one agent."""

    agent_id: str
    role: str = ""
    vitals: Vitals = Field(default_factory=Vitals)
    status_text: str = ""
    pull_state: PullStatus = PullStatus.IDLE
    target_id: int = 0
    target_name: str = ""
    anchor: Location | None = None
    last_seen_at: float = 0.0

    def is_stale(self, now: float, ttl: float) -> bool:
        return now - self.last_seen_at > ttl


# =============================================================================
# Leases
# =============================================================================


class Lease(BaseModel):
    """A time-bounded claim on a shareable action.

    A lease whose ``expires_at`` has passed is dead even if it is still
    physically present in the document.
    """

    lease_type: str
    lease_key: str
    holder_id: str
    started_at: float
    expires_at: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    def is_live(self, now: float) -> bool:
        return now < self.expires_at

    def remaining(self, now: float) -> float:
        return max(self.expires_at - now, 0.0)


# =============================================================================
# Rosters
# =============================================================================


class RotationRosterEntry(BaseModel):
    """Advisory rotation telemetry published by each rotation member."""

    agent_id: str
    order: int
    chain_size: int
    period: float
    updated_at: float

    def is_stale(self, now: float, ttl: float) -> bool:
        return now - self.updated_at > ttl


class ClaimantEntry(BaseModel):
    """A puller's advertised status in the task-claim roster."""

    agent_id: str
    status: PullStatus = PullStatus.IDLE
    target_id: int = 0
    timestamp: float = 0.0

    def is_stale(self, now: float, ttl: float) -> bool:
        return now - self.timestamp > ttl
