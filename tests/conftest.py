"""Shared fixtures for the Muster test suite.

Nothing here sleeps: time only moves when a test advances the fake clock.
"""

import pytest

from muster.actions import ActionBase, ActionRunner, BaseActionExecutor
from muster.coordination.documents import (
    CLAIM_DOCUMENT,
    ROTATION_DOCUMENT,
    TEAM_DOCUMENT,
    ensure_claim_tables,
    ensure_roster_tables,
    ensure_team_tables,
)
from muster.coordination.leases import LeaseCoordinator
from muster.coordination.presence import PresenceRegistry
from muster.coordination.store import InMemoryBackend, SharedDocumentStore
from muster.environment import Spawn
from muster.types import Location, Vitals


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now

    def set(self, value: float) -> None:
        self.now = value


class FakeEnvironment:
    """Scripted world for one agent. Side effects are recorded in ``calls``."""

    def __init__(self, name: str = "agent"):
        self.name = name
        self.location = Location()
        self.current_vitals = Vitals()
        self.combat = False
        self.hauled = 0
        self.busy = False
        self.spawns: dict[int, Spawn] = {}
        self.nearest: Spawn | None = None
        self.selected_id: int | None = None
        self.selected_name: str | None = None
        self.roles: dict[str, str] = {}
        self.captured: Spawn | None = None
        self.players: dict[str, Spawn] = {}
        self.attacking = False
        self.calls: list[tuple] = []
        self.announcements: list[tuple[str, str]] = []
        self.delays: list[float] = []

    def add_spawn(self, spawn: Spawn) -> Spawn:
        self.spawns[spawn.spawn_id] = spawn
        return spawn

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    # Sensing

    def position(self) -> Location:
        return self.location

    def vitals(self) -> Vitals:
        return self.current_vitals

    def in_combat(self) -> bool:
        return self.combat

    def hauled_count(self) -> int:
        return self.hauled

    def is_busy(self) -> bool:
        return self.busy

    def selected_target(self) -> Spawn | None:
        if self.selected_id is None:
            return None
        return self.spawns.get(self.selected_id)

    def lookup(self, spawn_id: int) -> Spawn | None:
        return self.spawns.get(spawn_id)

    def nearest_spawn(self, search: str) -> Spawn | None:
        self.calls.append(("nearest_spawn", search))
        return self.nearest

    def group_role(self, role: str) -> str | None:
        return self.roles.get(role)

    def find_player(self, name: str) -> Spawn | None:
        return self.players.get(name)

    def captured_unit(self) -> Spawn | None:
        return self.captured

    # Side effects

    def select_target(self, spawn_id: int) -> None:
        self.calls.append(("select_target", spawn_id))
        self.selected_id = spawn_id

    def select_by_name(self, name: str) -> None:
        self.calls.append(("select_by_name", name))
        self.selected_name = name

    def select_xtarget(self, slot: int) -> None:
        self.calls.append(("select_xtarget", slot))

    def assist(self, name: str) -> None:
        self.calls.append(("assist", name))

    def clear_target(self) -> None:
        self.calls.append(("clear_target",))
        self.selected_id = None

    def navigate_to_spawn(self, spawn_id: int) -> None:
        self.calls.append(("navigate_to_spawn", spawn_id))

    def navigate_to(self, location: Location) -> None:
        self.calls.append(("navigate_to", location))

    def stick_to_target(self) -> None:
        self.calls.append(("stick_to_target",))

    def stop_movement(self) -> None:
        self.calls.append(("stop_movement",))

    def set_attack(self, enabled: bool) -> None:
        self.calls.append(("set_attack", enabled))
        self.attacking = enabled

    def disengage_captured(self) -> None:
        self.calls.append(("disengage_captured",))

    def announce(self, channel: str, message: str) -> None:
        self.announcements.append((channel, message))

    def delay(self, seconds: float) -> None:
        self.delays.append(seconds)


class RecordingExecutor(BaseActionExecutor):
    """Executor that performs nothing and records what it was asked to do."""

    def __init__(self, clock):
        super().__init__(clock)
        self.performed: list[str] = []
        self.not_ready: set[str] = set()

    def is_ready(self, descriptor: ActionBase) -> bool:
        return descriptor.label not in self.not_ready

    def perform(self, descriptor: ActionBase) -> None:
        self.performed.append(descriptor.label)


class AgentHarness:
    """Coordination pieces of one simulated agent over a shared backend."""

    def __init__(self, agent_id: str, backend: InMemoryBackend, clock: FakeClock):
        self.agent_id = agent_id
        self.clock = clock
        self.env = FakeEnvironment(agent_id)
        self.team_store = SharedDocumentStore(TEAM_DOCUMENT, backend, 0.25, clock, normalize=ensure_team_tables)
        self.roster_store = SharedDocumentStore(ROTATION_DOCUMENT, backend, 1.0, clock, normalize=ensure_roster_tables)
        self.claims_store = SharedDocumentStore(CLAIM_DOCUMENT, backend, 1.0, clock, normalize=ensure_claim_tables)
        self.presence = PresenceRegistry(self.team_store, agent_id, clock)
        self.leases = LeaseCoordinator(self.team_store, agent_id, clock)
        self.executor = RecordingExecutor(clock)
        self.runner = ActionRunner(self.executor, self.leases, env=self.env)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def make_agent(backend, clock):
    """Factory for agents sharing one backend and one clock."""

    def factory(agent_id: str) -> AgentHarness:
        return AgentHarness(agent_id, backend, clock)

    return factory
