"""Agent runtime for Muster.

Wires one agent together from its settings: the shared document stores,
presence, leases, the action runner and the role machines. The host
calls ``tick()`` from its own loop, or ``run()`` to let the runtime loop.

Each tick runs, in order: pulling, rotation, support, capture, presence heartbeat,
auto-save. Roles are skipped while paused; presence is always published so
peers keep seeing a paused agent.
"""

import time
from pathlib import Path
from typing import Any

from .actions import ActionExecutor, ActionRunner
from .config import AgentSettings, save_settings
from .coordination.documents import ensure_claim_tables, ensure_roster_tables, ensure_team_tables
from .coordination.leases import LeaseCoordinator
from .coordination.presence import PresenceRegistry
from .coordination.store import Clock, DocumentBackend, FileBackend, SharedDocumentStore
from .environment import Environment
from .predicates import PredicateEvaluator
from .roles.capture import CaptureControlLoop
from .roles.pulling import TaskClaimStateMachine
from .roles.rotation import RotationScheduler
from .roles.support import SupportRole
from .types import PresenceEntry, PullStatus
from .utils.logging import StructuredLogger


class AgentRuntime:
    """One agent: stores, coordination and roles, driven tick by tick.

    Example:
        settings = load_settings("monk1.json", agent_id="monk1")
        runtime = AgentRuntime(settings, env, executor, settings_path="monk1.json")

        try:
            runtime.run()
        finally:
            runtime.shutdown()
    """

    def __init__(
        self,
        settings: AgentSettings,
        env: Environment,
        executor: ActionExecutor,
        evaluator: PredicateEvaluator | None = None,
        clock: Clock = time.time,
        backend: DocumentBackend | None = None,
        settings_path: str | Path | None = None,
    ):
        """Initialize the runtime.

        Args:
            settings: Agent settings; edited live by the control surface.
            env: World access.
            executor: Performs actions in the world.
            evaluator: Evaluates action conditions.
            clock: Time source in seconds.
            backend: Document backend; defaults to files in ``document_dir``.
            settings_path: Where ``save_settings()`` writes, if anywhere.
        """
        self.settings = settings
        self.env = env
        self._clock = clock
        self._settings_path = Path(settings_path) if settings_path else None
        self._log = StructuredLogger("runtime", agent=settings.agent_id)

        coordination = settings.coordination
        if backend is None:
            backend = FileBackend(coordination.document_dir)
        self.backend = backend

        self.team_store = SharedDocumentStore(
            coordination.team_document,
            backend,
            coordination.team_refresh,
            clock,
            normalize=ensure_team_tables,
        )
        self.roster_store = SharedDocumentStore(
            coordination.rotation_document,
            backend,
            coordination.roster_refresh,
            clock,
            normalize=ensure_roster_tables,
        )
        self.claims_store = SharedDocumentStore(
            coordination.claim_document,
            backend,
            coordination.roster_refresh,
            clock,
            normalize=ensure_claim_tables,
        )

        self.presence = PresenceRegistry(
            self.team_store,
            settings.agent_id,
            clock,
            liveness_ttl=coordination.presence_ttl,
            publish_interval=coordination.presence_interval,
        )
        self.leases = LeaseCoordinator(
            self.team_store,
            settings.agent_id,
            clock,
            liveness_ttl=coordination.presence_ttl,
        )
        self.runner = ActionRunner(executor, self.leases, evaluator, debug=settings.debug, env=env)

        self.pulling = TaskClaimStateMachine(
            agent_id=settings.agent_id,
            pull=settings.pull,
            camp=settings.camp,
            env=env,
            runner=self.runner,
            leases=self.leases,
            clock=clock,
            claims_store=self.claims_store,
        )
        self.rotation = RotationScheduler(
            agent_id=settings.agent_id,
            settings=settings.rotation,
            env=env,
            runner=self.runner,
            roster_store=self.roster_store,
            clock=clock,
            roster_ttl=coordination.roster_ttl,
        )
        self.support = SupportRole(
            agent_id=settings.agent_id,
            settings=settings.support,
            env=env,
            runner=self.runner,
            clock=clock,
        )
        self.capture = CaptureControlLoop(
            agent_id=settings.agent_id,
            settings=settings.capture,
            env=env,
            runner=self.runner,
            clock=clock,
        )

        self.paused = False
        self.ticks = 0
        self._stopped = False
        self._last_save = clock()

    @property
    def agent_id(self) -> str:
        return self.settings.agent_id

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def pause(self) -> None:
        self.paused = True
        self._log.info("Paused")

    def resume(self) -> None:
        self.paused = False
        self._log.info("Resumed")

    def stop(self) -> None:
        """Make ``run()`` return after the current tick."""
        self._stopped = True

    def save_settings(self) -> bool:
        """Persist the current settings to ``settings_path``."""
        self._last_save = self._clock()
        if self._settings_path is None:
            self._log.warning("No settings path, not saving")
            return False
        return save_settings(self.settings, self._settings_path)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status_text(self) -> str:
        if self.paused:
            return "Paused"
        if self.pulling.status_text and self.pulling.status_text != "Idle":
            return self.pulling.status_text
        return self.capture.status_text or self.support.status_text or self.pulling.status_text

    def build_presence(self) -> PresenceEntry:
        """Presence entry describing this agent right now."""
        vitals = self.env.vitals().model_copy(update={"in_combat": self.env.in_combat()})
        target = self.env.selected_target()
        return PresenceEntry(
            agent_id=self.agent_id,
            role=self.settings.role,
            vitals=vitals,
            status_text=self.status_text(),
            pull_state=self.pulling.pull_status,
            target_id=target.spawn_id if target else 0,
            target_name=target.name if target else "",
            anchor=self.settings.camp.anchor if self.settings.camp.enabled else None,
        )

    def status(self) -> dict[str, Any]:
        """Summary of this agent for the control surface."""
        rotation = self.rotation.state
        return {
            "agent_id": self.agent_id,
            "paused": self.paused,
            "status_text": self.status_text(),
            "pull_state": self.pulling.pull_status.value,
            "task_state": self.pulling.state.kind.value,
            "capture_state": self.capture.state.kind.value,
            "rotation_next_fire_at": rotation.next_fire_at,
            "peers": sorted(self.presence.peers()),
            "leases": [lease.model_dump(mode="json") for lease in self.leases.live_leases()],
            "ticks": self.ticks,
        }

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def tick(self) -> None:
        """Run one pass of every role, then publish presence."""
        self.ticks += 1
        if not self.paused:
            self.pulling.tick()
            self.rotation.tick()
            self.support.tick()
            self.capture.tick()

        self.presence.publish(self.build_presence())

        if self.settings.auto_save and self._clock() - self._last_save >= self.settings.save_interval:
            self.save_settings()

    def run(self, max_ticks: int | None = None) -> int:
        """Tick until stopped, or until ``max_ticks`` ticks have run.

        Returns:
            Number of ticks run.
        """
        self._stopped = False
        count = 0
        self._log.info("Starting", role=self.settings.role or "-")
        while not self._stopped and (max_ticks is None or count < max_ticks):
            self.tick()
            count += 1
            self.env.delay(self.settings.tick_interval)
        return count

    def shutdown(self) -> None:
        """Retract presence, leases and the pull claim, then save settings if a path is set."""
        self._stopped = True
        self.pulling.publish_claim(PullStatus.IDLE)
        self.presence.retract()
        if self._settings_path is not None:
            self.save_settings()
        self._log.info("Shut down")
