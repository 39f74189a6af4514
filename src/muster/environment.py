"""Agent-local world contract for Muster.

The role machines sense the world and issue side effects through this
protocol only. The host binds it to the real client; tests bind it to a
scripted fake. Every side effect must be idempotent: issuing the same
selection or movement twice is harmless.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .types import Location, Vitals


@dataclass(frozen=True)
class Spawn:
    """A snapshot of one entity in the world."""

    spawn_id: int
    name: str = ""
    hp_pct: float = 100.0
    distance: float = 0.0
    is_corpse: bool = False
    is_dead: bool = False

    @property
    def targetable(self) -> bool:
        return self.spawn_id > 0 and not self.is_corpse and not self.is_dead


@runtime_checkable
class Environment(Protocol):
    """Sensing and side effects available to one agent."""

    # Sensing

    def position(self) -> Location: ...

    def vitals(self) -> Vitals: ...

    def in_combat(self) -> bool: ...

    def hauled_count(self) -> int:
        """Number of hostile entities currently engaged with this agent."""
        ...

    def is_busy(self) -> bool:
        """True while an action is still being performed (e.g. casting)."""
        ...

    def selected_target(self) -> Spawn | None: ...

    def lookup(self, spawn_id: int) -> Spawn | None: ...

    def nearest_spawn(self, search: str) -> Spawn | None: ...

    def group_role(self, role: str) -> str | None:
        """Name of the member holding a group role such as "maintank"."""
        ...

    def find_player(self, name: str) -> Spawn | None:
        """A player character by name, with its health, if in range."""
        ...

    def captured_unit(self) -> Spawn | None:
        """The subordinate unit currently under this agent's control."""
        ...

    # Side effects

    def select_target(self, spawn_id: int) -> None: ...

    def select_by_name(self, name: str) -> None: ...

    def select_xtarget(self, slot: int) -> None: ...

    def assist(self, name: str) -> None: ...

    def clear_target(self) -> None: ...

    def navigate_to_spawn(self, spawn_id: int) -> None: ...

    def navigate_to(self, location: Location) -> None: ...

    def stick_to_target(self) -> None: ...

    def stop_movement(self) -> None: ...

    def set_attack(self, enabled: bool) -> None: ...

    def disengage_captured(self) -> None: ...

    def announce(self, channel: str, message: str) -> None: ...

    def delay(self, seconds: float) -> None:
        """Let the world settle after a side effect before reading state again."""
        ...
