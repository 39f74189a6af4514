"""Cooperative pulling for Muster.

Several agents may be configured to pull for the same camp. Only one may be
out at a time. The machine runs ``Idle -> Claiming -> Acquired ->
Abandoning -> Idle``; the team-wide ``("pull", tag)`` lease is the only
thing that keeps two pullers apart, because local state cannot see a
peer's intent.

The task-claim roster is a second, advisory signal: a peer advertising an
active pull makes this agent yield even before its lease is visible.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar

from ..actions import ActionRunner
from ..config import CampSettings, PullSettings
from ..coordination.documents import ensure_claim_tables, parse_entry, prune_claimants
from ..coordination.leases import LeaseCoordinator
from ..coordination.store import Clock, SharedDocumentStore
from ..environment import Environment, Spawn
from ..types import ClaimantEntry, PullStatus
from ..utils.logging import StructuredLogger

PULL_LEASE_TYPE = "pull"
ENGAGE_SETTLE_SECONDS = 0.05
RESELECT_SETTLE_SECONDS = 0.02


class TaskState(str, Enum):
    """States of the task-claim machine."""

    IDLE = "idle"
    CLAIMING = "claiming"
    ACQUIRED = "acquired"
    ABANDONING = "abandoning"


class PullPhase(str, Enum):
    """Progress inside the acquired state."""

    ENGAGING = "engaging"
    RETURNING = "returning"


@dataclass(frozen=True)
class Idle:
    kind: ClassVar[TaskState] = TaskState.IDLE


@dataclass(frozen=True)
class Claiming:
    kind: ClassVar[TaskState] = TaskState.CLAIMING
    target: Spawn


@dataclass(frozen=True)
class Acquired:
    kind: ClassVar[TaskState] = TaskState.ACQUIRED
    target_id: int
    target_name: str
    phase: PullPhase
    started_at: float
    lease_expires_at: float


@dataclass(frozen=True)
class Abandoning:
    kind: ClassVar[TaskState] = TaskState.ABANDONING
    target_id: int
    reason: str


PullMachineState = Idle | Claiming | Acquired | Abandoning


class TaskClaimStateMachine:
    """Claims the pull role, runs one pull, then gives the role back.

    Example:
        machine = TaskClaimStateMachine(
            agent_id="monk1",
            pull=settings.pull,
            camp=settings.camp,
            env=env,
            runner=runner,
            leases=leases,
            clock=time.time,
            claims_store=claims_store,
        )

        while running:
            machine.tick()
    """

    def __init__(
        self,
        agent_id: str,
        pull: PullSettings,
        camp: CampSettings,
        env: Environment,
        runner: ActionRunner,
        leases: LeaseCoordinator,
        clock: Clock,
        claims_store: SharedDocumentStore | None = None,
        on_transition: Callable[[TaskState, TaskState], None] | None = None,
    ):
        """Initialize the machine.

        Args:
            agent_id: This agent's identity.
            pull: Pull settings, read live on every tick.
            camp: Camp settings holding the anchor.
            env: World access.
            runner: Performs the opener and feign actions.
            leases: Coordinator for the pull role lease.
            clock: Time source in seconds.
            claims_store: Store for the task-claim roster, if synced.
            on_transition: Callback on state change (old, new).
        """
        self._agent_id = agent_id
        self._pull = pull
        self._camp = camp
        self._env = env
        self._runner = runner
        self._leases = leases
        self._clock = clock
        self._claims_store = claims_store
        self._on_transition = on_transition
        self._log = StructuredLogger("roles.pulling", agent=agent_id)
        self._state: PullMachineState = Idle()
        self.status_text = "Idle"

    @property
    def state(self) -> PullMachineState:
        return self._state

    @property
    def lease_key(self) -> str:
        return self._pull.tag

    @property
    def pull_status(self) -> PullStatus:
        """Progress as advertised in presence."""
        if isinstance(self._state, Acquired):
            if self._state.phase == PullPhase.RETURNING:
                return PullStatus.RETURNING
            return PullStatus.PULLING
        return PullStatus.IDLE

    def _transition(self, new_state: PullMachineState) -> None:
        old = self._state.kind
        self._state = new_state
        if old != new_state.kind:
            self._log.debug("State changed", old=old.value, new=new_state.kind.value)
            if self._on_transition:
                self._on_transition(old, new_state.kind)

    # -------------------------------------------------------------------------
    # Peers
    # -------------------------------------------------------------------------

    def publish_claim(self, status: PullStatus, target_id: int = 0) -> None:
        """Advertise this agent's pull status in the task-claim roster."""
        if not self._pull.sync_enabled or self._claims_store is None:
            return
        now = self._clock()
        document = ensure_claim_tables(self._claims_store.read())
        document["claimants"][self._agent_id] = ClaimantEntry(
            agent_id=self._agent_id,
            status=status,
            target_id=target_id,
            timestamp=now,
        ).model_dump(mode="json")
        prune_claimants(document, now, self._pull.stale_seconds)
        self._claims_store.write(document)

    def peer_pulling(self) -> str | None:
        """Name of a peer advertising an active pull, if any."""
        if not self._pull.sync_enabled or self._claims_store is None:
            return None
        document = prune_claimants(
            self._claims_store.read(), self._clock(), self._pull.stale_seconds
        )
        for agent_id, raw in document["claimants"].items():
            if agent_id == self._agent_id:
                continue
            entry = parse_entry(ClaimantEntry, raw)
            if entry is not None and entry.status == PullStatus.PULLING:
                return agent_id
        return None

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    def distance_to_camp(self) -> float:
        anchor = self._camp.anchor
        if anchor is None:
            return float("inf")
        here = self._env.position()
        return anchor.planar_distance(here.x, here.y)

    def _return_to_camp(self) -> None:
        if self._camp.anchor is None:
            return
        self._env.stop_movement()
        self._env.navigate_to(self._camp.anchor)

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self) -> PullMachineState:
        """Advance the machine by one step."""
        if not self._pull.enabled:
            if not isinstance(self._state, Idle):
                self._abandon("pulling disabled")
            return self._state

        if isinstance(self._state, Idle):
            self._tick_idle()
        elif isinstance(self._state, Claiming):
            self._tick_claiming(self._state)
        elif isinstance(self._state, Acquired):
            self._tick_acquired(self._state)
        elif isinstance(self._state, Abandoning):
            self._finish_abandon(self._state)
        return self._state

    def _tick_idle(self) -> None:
        if self._env.in_combat():
            return
        if self._env.hauled_count() >= self._pull.max_active:
            return
        peer = self.peer_pulling()
        if peer is not None:
            self.status_text = f"Waiting: {peer} pulling"
            return
        holder = self._leases.held_by_peer(PULL_LEASE_TYPE, self.lease_key)
        if holder is not None:
            self.status_text = f"Waiting: {holder.holder_id} pulling"
            return

        target = self._env.nearest_spawn(self._pull.search)
        if target is None or not target.targetable:
            return
        self._transition(Claiming(target))
        self._tick_claiming(self._state)

    def _tick_claiming(self, state: Claiming) -> None:
        target = state.target
        now = self._clock()
        claimed, existing = self._leases.try_claim(
            PULL_LEASE_TYPE,
            self.lease_key,
            self._pull.stale_seconds,
            {"status": PullStatus.PULLING.value, "target_id": target.spawn_id, "target_name": target.name},
        )
        if not claimed:
            holder = existing.holder_id if existing else "peer"
            self.status_text = f"Waiting: {holder} pulling"
            self._transition(Idle())
            return

        self._transition(
            Acquired(
                target_id=target.spawn_id,
                target_name=target.name,
                phase=PullPhase.ENGAGING,
                started_at=now,
                lease_expires_at=now + self._pull.stale_seconds,
            )
        )
        self.publish_claim(PullStatus.PULLING, target.spawn_id)
        self._engage(target)

    def _engage(self, target: Spawn) -> None:
        self._env.select_target(target.spawn_id)
        self._env.delay(ENGAGE_SETTLE_SECONDS)
        if self._pull.use_opener:
            self._runner.perform(self._pull.opener)
        if self._pull.use_nav:
            self._env.navigate_to_spawn(target.spawn_id)
        else:
            self._env.stick_to_target()
        self._env.set_attack(True)
        self.status_text = f"Pulling {target.name or target.spawn_id}"
        self._log.info("Pulling", target=target.name, target_id=target.spawn_id)

    def _renew(self, state: Acquired, now: float) -> bool:
        """Re-claim the role lease once half of it has run out."""
        if now < state.lease_expires_at - self._pull.stale_seconds / 2:
            return True
        status = PullStatus.RETURNING if state.phase == PullPhase.RETURNING else PullStatus.PULLING
        claimed, _ = self._leases.try_claim(
            PULL_LEASE_TYPE,
            self.lease_key,
            self._pull.stale_seconds,
            {"status": status.value, "target_id": state.target_id, "target_name": state.target_name},
        )
        if claimed:
            self._state = Acquired(
                target_id=state.target_id,
                target_name=state.target_name,
                phase=state.phase,
                started_at=state.started_at,
                lease_expires_at=now + self._pull.stale_seconds,
            )
        return claimed

    def _tick_acquired(self, state: Acquired) -> None:
        now = self._clock()
        if now - state.started_at > self._pull.max_pull_seconds:
            self._abandon("timed out")
            return
        if not self._renew(state, now):
            self._abandon("lease lost")
            return
        state = self._state  # type: ignore[assignment]

        if state.phase == PullPhase.ENGAGING:
            self._tick_engaging(state)
        else:
            self._tick_returning(state)

    def _tick_engaging(self, state: Acquired) -> None:
        target = self._env.lookup(state.target_id)
        if target is None or not target.targetable:
            self._abandon("target lost")
            return

        selected = self._env.selected_target()
        if selected is None or selected.spawn_id != state.target_id:
            self._env.select_target(state.target_id)
            self._env.delay(RESELECT_SETTLE_SECONDS)

        if self._env.hauled_count() > 1 and self._env.vitals().hp < self._pull.feign_pct_hp:
            self._runner.perform(self._pull.feign)

        engaged = target.distance < self._pull.engage_distance
        hauling = self._env.hauled_count() > 0 and self.distance_to_camp() > self._pull.min_range
        if engaged or hauling:
            self._env.set_attack(False)
            self._return_to_camp()
            self._state = Acquired(
                target_id=state.target_id,
                target_name=state.target_name,
                phase=PullPhase.RETURNING,
                started_at=state.started_at,
                lease_expires_at=state.lease_expires_at,
            )
            self.publish_claim(PullStatus.RETURNING, state.target_id)
            self._leases.try_claim(
                PULL_LEASE_TYPE,
                self.lease_key,
                state.lease_expires_at - self._clock(),
                {"status": PullStatus.RETURNING.value, "target_id": state.target_id, "target_name": state.target_name},
            )
            self.status_text = f"Returning with {state.target_name or state.target_id}"

    def _tick_returning(self, state: Acquired) -> None:
        if self._camp.anchor is None or self.distance_to_camp() <= self._camp.radius:
            self._abandon("complete")

    # -------------------------------------------------------------------------
    # Abandon
    # -------------------------------------------------------------------------

    def _abandon(self, reason: str) -> None:
        state = self._state
        if isinstance(state, Acquired):
            target_id = state.target_id
        elif isinstance(state, Claiming):
            target_id = state.target.spawn_id
        else:
            target_id = 0
        abandoning = Abandoning(target_id=target_id, reason=reason)
        self._transition(abandoning)
        self._finish_abandon(abandoning)

    def _finish_abandon(self, state: Abandoning) -> None:
        self._env.set_attack(False)
        self._env.stop_movement()
        self._leases.release(PULL_LEASE_TYPE, self.lease_key)
        self.publish_claim(PullStatus.IDLE, 0)
        if state.reason == "complete":
            self.status_text = "Pull complete"
            self._log.info("Pull finished", target_id=state.target_id)
        else:
            self.status_text = f"Pull abandoned: {state.reason}"
            self._log.info("Pull abandoned", target_id=state.target_id, reason=state.reason)
        self._transition(Idle())
