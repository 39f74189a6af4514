"""Strict rotation of a shared action for Muster.

Each member is configured with a 1-based ``order`` and the ``chain_size``
it believes the rotation has. Member ``n`` fires ``(n - 1) * period``
seconds after the rotation starts and then once every
``period * chain_size`` seconds, so members take turns ``period`` apart.

The roster document is telemetry only. Members may disagree on the chain
size; disagreement is logged and otherwise tolerated. Each fire is wrapped
in a lease keyed by the target, so two members misconfigured with the same
order do not both fire in one slot.
"""

from dataclasses import dataclass, field

from ..actions import ActionRunner, ShareSpec
from ..config import RotationSettings
from ..coordination.documents import ensure_roster_tables, parse_entry, prune_roster
from ..coordination.store import Clock, SharedDocumentStore
from ..environment import Environment
from ..targeting import resolve_target_name
from ..types import RotationRosterEntry
from ..utils.logging import StructuredLogger

TARGET_SETTLE_SECONDS = 0.03


@dataclass
class FireRecord:
    """One turn taken by this member."""

    at: float
    target: str
    performed: bool


@dataclass
class RotationState:
    """Local schedule of one rotation member."""

    next_fire_at: float | None = None
    last_fire_at: float | None = None
    resyncs: int = 0
    history: list[FireRecord] = field(default_factory=list)


class RotationScheduler:
    """Fires a shared action once per rotation, in this member's slot.

    Example:
        scheduler = RotationScheduler(
            agent_id="cleric2",
            settings=settings.rotation,
            env=env,
            runner=runner,
            roster_store=roster_store,
            clock=time.time,
        )

        while running:
            scheduler.tick()
    """

    def __init__(
        self,
        agent_id: str,
        settings: RotationSettings,
        env: Environment,
        runner: ActionRunner,
        roster_store: SharedDocumentStore,
        clock: Clock,
        roster_ttl: float = 60.0,
        history_limit: int = 50,
    ):
        """Initialize the scheduler.

        Args:
            agent_id: This agent's identity.
            settings: Rotation settings, read live on every tick.
            env: World access.
            runner: Performs the rotation action under a lease.
            roster_store: Store for the rotation roster.
            clock: Time source in seconds.
            roster_ttl: Seconds before a roster entry is stale.
            history_limit: Fire records kept locally.
        """
        self._agent_id = agent_id
        self._settings = settings
        self._env = env
        self._runner = runner
        self._roster_store = roster_store
        self._clock = clock
        self._roster_ttl = roster_ttl
        self._history_limit = history_limit
        self._log = StructuredLogger("roles.rotation", agent=agent_id)
        self._state = RotationState()

    @property
    def state(self) -> RotationState:
        return self._state

    def reset(self) -> None:
        """Forget the schedule; the next tick re-synchronizes."""
        self._state = RotationState()

    def publish(self) -> None:
        """Write this member's roster entry and prune stale ones."""
        now = self._clock()
        document = ensure_roster_tables(self._roster_store.read())
        document["members"][self._agent_id] = RotationRosterEntry(
            agent_id=self._agent_id,
            order=self._settings.order,
            chain_size=self._settings.chain_size,
            period=self._settings.period,
            updated_at=now,
        ).model_dump(mode="json")
        prune_roster(document, now, self._roster_ttl)
        self._roster_store.write(document)

    def roster(self) -> list[RotationRosterEntry]:
        """Live roster entries ordered by rotation position."""
        document = prune_roster(self._roster_store.read(), self._clock(), self._roster_ttl)
        entries = [parse_entry(RotationRosterEntry, raw) for raw in document["members"].values()]
        return sorted((e for e in entries if e is not None), key=lambda e: (e.order, e.agent_id))

    def disagreements(self) -> list[RotationRosterEntry]:
        """Peers whose advertised chain size or period differs from ours."""
        return [
            entry
            for entry in self.roster()
            if entry.agent_id != self._agent_id
            and (entry.chain_size != self._settings.chain_size or entry.period != self._settings.period)
        ]

    def _needs_resync(self, now: float) -> bool:
        next_fire = self._state.next_fire_at
        if next_fire is None:
            return True
        settings = self._settings
        rotation = settings.rotation_seconds
        horizon = max(rotation, (settings.order - 1) * settings.period) + settings.start_delay
        # Missed at least one whole rotation, or scheduled further out than
        # any slot could be after a settings change
        return now - next_fire > rotation or next_fire - now > horizon

    def tick(self) -> bool:
        """Publish telemetry and fire if this member's slot has arrived.

        Returns:
            True if the action was performed this tick.
        """
        if not self._settings.enabled:
            return False

        self.publish()
        now = self._clock()
        settings = self._settings

        if self._needs_resync(now):
            offset = (settings.order - 1) * settings.period + settings.start_delay
            if self._state.next_fire_at is not None:
                self._state.resyncs += 1
                self._log.info("Re-synchronizing rotation slot", order=settings.order)
            self._state.next_fire_at = now + offset
            for peer in self.disagreements():
                self._log.debug(
                    "Peer disagrees on rotation",
                    peer=peer.agent_id,
                    chain_size=peer.chain_size,
                    period=peer.period,
                )

        if now < self._state.next_fire_at:
            return False
        return self._fire(now)

    def _fire(self, now: float) -> bool:
        settings = self._settings
        target = resolve_target_name(settings.target, self._env, self._agent_id)
        self._env.select_by_name(target)
        self._env.delay(TARGET_SETTLE_SECONDS)

        performed = self._runner.perform(
            settings.action,
            share=ShareSpec(
                lease_type=settings.lease_type,
                lease_key=f"CH:{target}",
                duration=settings.period,
                metadata={
                    "target": target,
                    "order": settings.order,
                    "chain_size": settings.chain_size,
                    "action": settings.action.label,
                    "mode": "rotation",
                },
            ),
        )
        if performed and settings.announce and settings.channel:
            try:
                message = settings.message % (target, settings.order, settings.chain_size)
            except (TypeError, ValueError):
                message = f"{settings.action.label} {target}"
            self._env.announce(settings.channel, message)

        self._state.last_fire_at = now
        self._state.next_fire_at = now + settings.rotation_seconds
        self._state.history.append(FireRecord(at=now, target=target, performed=performed))
        del self._state.history[: -self._history_limit]
        return performed
