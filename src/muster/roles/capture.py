"""Capture and recapture control for Muster.

An agent may hold a captured subordinate unit that can break free at any
moment. The loop notices the loss, optionally pacifies the freed unit,
and tries to capture it again until a recapture window runs out. A unit
that cannot be recaptured in time, or that vanishes, is suppressed for a
while so the loop does not thrash on it.

Nothing here is fatal. A step that cannot proceed (busy, not ready, target
invalid) holds its state and retries on the next tick.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar

from ..actions import ActionRunner
from ..config import CaptureSettings
from ..coordination.store import Clock
from ..environment import Environment, Spawn
from ..utils.logging import StructuredLogger


class CapturePhase(str, Enum):
    """States of the capture loop."""

    NO_CAPTURE = "no_capture"
    CAPTURED = "captured"
    LOSS_DETECTED = "loss_detected"
    PENDING_RECAPTURE = "pending_recapture"


@dataclass(frozen=True)
class NoCapture:
    kind: ClassVar[CapturePhase] = CapturePhase.NO_CAPTURE


@dataclass(frozen=True)
class Captured:
    kind: ClassVar[CapturePhase] = CapturePhase.CAPTURED
    unit_id: int
    hp_pct: float = 100.0


@dataclass(frozen=True)
class LossDetected:
    kind: ClassVar[CapturePhase] = CapturePhase.LOSS_DETECTED
    unit_id: int
    lost_at: float


@dataclass(frozen=True)
class PendingRecapture:
    kind: ClassVar[CapturePhase] = CapturePhase.PENDING_RECAPTURE
    unit_id: int
    since: float
    pacify_pending: bool = False


CaptureMachineState = NoCapture | Captured | LossDetected | PendingRecapture


class CaptureControlLoop:
    """Keeps a subordinate unit captured, with bounded retries per unit.

    Example:
        loop = CaptureControlLoop(
            agent_id="enc1",
            settings=settings.capture,
            env=env,
            runner=runner,
            clock=time.time,
        )

        while running:
            loop.tick()
    """

    def __init__(
        self,
        agent_id: str,
        settings: CaptureSettings,
        env: Environment,
        runner: ActionRunner,
        clock: Clock,
        on_transition: Callable[[CapturePhase, CapturePhase], None] | None = None,
    ):
        """Initialize the loop.

        Args:
            agent_id: This agent's identity.
            settings: Capture settings, read live on every tick.
            env: World access.
            runner: Performs the capture and pacify actions.
            clock: Time source in seconds.
            on_transition: Callback on state change (old, new).
        """
        self._agent_id = agent_id
        self._settings = settings
        self._env = env
        self._runner = runner
        self._clock = clock
        self._on_transition = on_transition
        self._log = StructuredLogger("roles.capture", agent=agent_id)

        self._state: CaptureMachineState = NoCapture()
        self._suppress_until: dict[int, float] = {}
        self.next_attempt_at = 0.0
        self.last_attempt_at: float | None = None
        self.last_disengage_at: float | None = None
        self.attempts = 0
        self.status_text = ""

    @property
    def state(self) -> CaptureMachineState:
        return self._state

    @property
    def has_active_capture(self) -> bool:
        return isinstance(self._state, Captured)

    def _transition(self, new_state: CaptureMachineState) -> None:
        old = self._state.kind
        self._state = new_state
        if old != new_state.kind:
            self._log.debug("State changed", old=old.value, new=new_state.kind.value)
            if self._on_transition:
                self._on_transition(old, new_state.kind)

    # -------------------------------------------------------------------------
    # Suppression
    # -------------------------------------------------------------------------

    def is_suppressed(self, unit_id: int, now: float | None = None) -> bool:
        until = self._suppress_until.get(unit_id)
        if until is None:
            return False
        return (self._clock() if now is None else now) < until

    def suppressed(self) -> dict[int, float]:
        """Suppressed unit ids and when their suppression ends."""
        return dict(self._suppress_until)

    def suppress(self, unit_id: int, now: float) -> None:
        self._suppress_until[unit_id] = now + self._settings.suppress_seconds
        self._log.info("Suppressing unit", unit=unit_id, seconds=self._settings.suppress_seconds)

    def _expire_suppressions(self, now: float) -> None:
        for unit_id, until in list(self._suppress_until.items()):
            if now >= until:
                del self._suppress_until[unit_id]

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _context(self, target: Spawn | None) -> dict[str, Any]:
        return {"target": target, "agent_id": self._agent_id}

    def _select(self, unit_id: int) -> None:
        selected = self._env.selected_target()
        if selected is None or selected.spawn_id != unit_id:
            self._env.select_target(unit_id)
            self._env.delay(self._settings.settle_delay)

    def _attempt_capture(self, target: Spawn | None) -> bool:
        if not self._runner.perform(self._settings.action, self._context(target)):
            return False
        attempt = self._clock()
        self.last_attempt_at = attempt
        self.next_attempt_at = attempt + self._settings.recapture_delay
        self.attempts += 1
        self.status_text = f"Capture: {self._settings.action.label}"
        return True

    def _attempt_pacify(self, target: Spawn | None) -> bool:
        action = self._settings.pacify_action
        if action is None or not action.label:
            return False
        if not self._runner.perform(action, self._context(target)):
            self._log.debug("Pacify not performed", action=action.label)
            return False
        after = self._clock()
        self.next_attempt_at = max(self.next_attempt_at, after + self._settings.post_pacify_delay)
        self.status_text = f"Pacify: {action.label}"
        return True

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self) -> CaptureMachineState:
        """Advance the loop by one step."""
        if not self._settings.enabled:
            return self._state

        now = self._clock()
        self._expire_suppressions(now)

        unit = self._env.captured_unit()
        if unit is not None and unit.spawn_id > 0:
            self._tick_captured(unit, now)
            return self._state

        if isinstance(self._state, Captured):
            self._log.info("Lost captured unit", unit=self._state.unit_id)
            self._transition(LossDetected(unit_id=self._state.unit_id, lost_at=now))
        if isinstance(self._state, LossDetected):
            self._tick_loss(self._state, now)
        if isinstance(self._state, PendingRecapture):
            if self._tick_recapture(self._state, now):
                return self._state

        self._tick_fresh(now)
        return self._state

    def _tick_captured(self, unit: Spawn, now: float) -> None:
        if not isinstance(self._state, Captured) or self._state.unit_id != unit.spawn_id:
            self.status_text = f"Captured {unit.name or unit.spawn_id}"
        self._transition(Captured(unit_id=unit.spawn_id, hp_pct=unit.hp_pct))

        if 0 < unit.hp_pct < self._settings.break_hp:
            last = self.last_disengage_at
            if last is None or now - last > self._settings.disengage_interval:
                self._env.disengage_captured()
                self.last_disengage_at = now

    def _tick_loss(self, state: LossDetected, now: float) -> None:
        settings = self._settings
        if settings.recapture_on_loss and not self.is_suppressed(state.unit_id, now):
            pacify = bool(
                settings.pacify_on_break
                and settings.pacify_action is not None
                and settings.pacify_action.label
            )
            self._transition(
                PendingRecapture(unit_id=state.unit_id, since=state.lost_at, pacify_pending=pacify)
            )
        else:
            self._transition(NoCapture())

    def _give_up(self, unit_id: int, now: float, reason: str) -> None:
        self.suppress(unit_id, now)
        self.status_text = f"Gave up on {unit_id}: {reason}"
        self._transition(NoCapture())

    def _tick_recapture(self, state: PendingRecapture, now: float) -> bool:
        """Work on a pending recapture.

        Returns:
            True if the tick is spent; False if the loop gave up on the unit
            and may look for a fresh target.
        """
        window = self._settings.suppress_seconds
        if window > 0 and now - state.since > window:
            self._give_up(state.unit_id, now, "recapture window expired")
            return False

        spawn = self._env.lookup(state.unit_id)
        if spawn is None or not spawn.targetable:
            self._give_up(state.unit_id, now, "unit gone")
            return False

        self._select(state.unit_id)

        if state.pacify_pending:
            if not self._env.is_busy():
                # Cleared whether or not the pacify went off
                self._attempt_pacify(spawn)
                self._state = PendingRecapture(
                    unit_id=state.unit_id, since=state.since, pacify_pending=False
                )
            return True

        if self._env.is_busy():
            return True
        if now < self.next_attempt_at:
            return True
        self._attempt_capture(spawn)
        return True

    def _tick_fresh(self, now: float) -> None:
        if now < self.next_attempt_at:
            return

        selected = self._env.selected_target()
        candidate: Spawn | None = None
        if selected is not None and selected.targetable and not self.is_suppressed(selected.spawn_id, now):
            candidate = selected
        if candidate is None and self._settings.target_filter:
            found = self._env.nearest_spawn(self._settings.target_filter)
            if found is not None and found.targetable and not self.is_suppressed(found.spawn_id, now):
                candidate = found
        if candidate is None:
            return

        self._select(candidate.spawn_id)
        if self._env.is_busy():
            return
        self._attempt_capture(candidate)
