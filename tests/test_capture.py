"""Tests for the capture and recapture loop."""

import pytest

from muster.actions import SpellAction
from muster.config import CaptureSettings
from muster.environment import Spawn
from muster.roles.capture import (
    CaptureControlLoop,
    CapturePhase,
    Captured,
    NoCapture,
    PendingRecapture,
)

WOLF = Spawn(7, "a_wolf", hp_pct=80.0)


def make_loop(agent, **overrides):
    options = {
        "enabled": True,
        "action": SpellAction(name="Dominate", target="current"),
        "settle_delay": 0.0,
        **overrides,
    }
    transitions = []
    loop = CaptureControlLoop(
        agent_id=agent.agent_id,
        settings=CaptureSettings(**options),
        env=agent.env,
        runner=agent.runner,
        clock=agent.clock,
        on_transition=lambda old, new: transitions.append((old, new)),
    )
    loop.transitions = transitions
    return loop


@pytest.fixture
def enchanter(make_agent):
    agent = make_agent("enc1")
    agent.env.add_spawn(WOLF)
    agent.env.captured = WOLF
    return agent


def break_free(agent, spawn=WOLF):
    """The unit slips control but is still standing nearby."""
    agent.env.captured = None
    agent.env.spawns[spawn.spawn_id] = spawn


class TestCaptured:
    """Tests while a unit is held."""

    def test_tracks_captured_unit(self, enchanter):
        """Test that a held unit is reported as captured."""
        loop = make_loop(enchanter)
        state = loop.tick()

        assert state == Captured(unit_id=7, hp_pct=80.0)
        assert loop.has_active_capture
        assert enchanter.executor.performed == []

    def test_disengages_weak_unit_at_bounded_rate(self, enchanter, clock):
        """Test that a unit close to dying is pulled out of the fight."""
        loop = make_loop(enchanter)
        enchanter.env.captured = Spawn(7, "a_wolf", hp_pct=20.0)

        loop.tick()
        clock.advance(0.5)
        loop.tick()
        clock.advance(0.5)
        loop.tick()

        assert len(enchanter.env.called("disengage_captured")) == 2

    def test_dead_unit_is_not_disengaged(self, enchanter):
        """Test that a unit at zero health is left alone."""
        enchanter.env.captured = Spawn(7, "a_wolf", hp_pct=0.0)
        make_loop(enchanter).tick()
        assert enchanter.env.called("disengage_captured") == []

    def test_disabled_loop_does_nothing(self, enchanter):
        """Test that a disabled loop never touches the world."""
        loop = make_loop(enchanter, enabled=False)
        assert isinstance(loop.tick(), NoCapture)
        assert enchanter.env.calls == []


class TestRecapture:
    """Tests for losing and recapturing a unit."""

    def test_loss_leads_to_recapture_attempt(self, enchanter, clock):
        """Test the path from a break to a new capture attempt."""
        loop = make_loop(enchanter)
        loop.tick()

        break_free(enchanter)
        clock.advance(0.5)
        state = loop.tick()

        assert state == PendingRecapture(unit_id=7, since=0.5)
        assert loop.transitions == [
            (CapturePhase.NO_CAPTURE, CapturePhase.CAPTURED),
            (CapturePhase.CAPTURED, CapturePhase.LOSS_DETECTED),
            (CapturePhase.LOSS_DETECTED, CapturePhase.PENDING_RECAPTURE),
        ]
        assert enchanter.env.selected_id == 7
        assert enchanter.executor.performed == ["Dominate"]
        assert loop.next_attempt_at == 2.5

    def test_attempts_are_spaced(self, enchanter, clock):
        """Test the delay between recapture attempts."""
        loop = make_loop(enchanter)
        loop.tick()
        break_free(enchanter)

        for _ in range(5):
            clock.advance(0.5)
            loop.tick()

        assert enchanter.executor.performed == ["Dominate", "Dominate"]
        assert loop.attempts == 2

    def test_successful_recapture(self, enchanter, clock):
        """Test returning to captured once the unit is held again."""
        loop = make_loop(enchanter)
        loop.tick()
        break_free(enchanter)
        clock.advance(0.5)
        loop.tick()

        enchanter.env.captured = WOLF
        clock.advance(0.5)
        assert isinstance(loop.tick(), Captured)

    def test_window_expiry_suppresses_unit(self, enchanter, clock):
        """Test giving up on a unit that cannot be recaptured in time."""
        loop = make_loop(enchanter, suppress_seconds=6.0)
        loop.tick()
        break_free(enchanter)

        for _ in range(14):
            clock.advance(0.5)
            loop.tick()

        assert isinstance(loop.state, NoCapture)
        assert loop.is_suppressed(7)
        attempts = loop.attempts

        # Still selected, but suppressed: no new attempts on it
        for _ in range(10):
            clock.advance(0.5)
            loop.tick()
        assert loop.attempts == attempts
        assert not loop.is_suppressed(7, now=clock() + 6.0)

    def test_vanished_unit_is_given_up(self, enchanter, clock):
        """Test that a unit that died or despawned is suppressed at once."""
        loop = make_loop(enchanter)
        loop.tick()
        break_free(enchanter, Spawn(7, "a_wolf", is_dead=True))

        clock.advance(0.5)
        assert isinstance(loop.tick(), NoCapture)
        assert loop.is_suppressed(7)
        assert loop.status_text == "Gave up on 7: unit gone"
        assert enchanter.executor.performed == []

    def test_no_recapture_when_disabled(self, enchanter, clock):
        """Test that a loss goes straight to no capture when recapture is off."""
        loop = make_loop(enchanter, recapture_on_loss=False)
        loop.tick()
        break_free(enchanter)
        enchanter.env.selected_id = None

        clock.advance(0.5)
        assert isinstance(loop.tick(), NoCapture)
        assert enchanter.executor.performed == []

    def test_suppressed_unit_is_not_pursued(self, enchanter, clock):
        """Test that losing a unit already suppressed skips recapture."""
        loop = make_loop(enchanter)
        loop.suppress(7, clock())
        loop.tick()
        break_free(enchanter)

        clock.advance(0.5)
        assert isinstance(loop.tick(), NoCapture)
        assert enchanter.executor.performed == []

    def test_busy_agent_waits(self, enchanter, clock):
        """Test that no attempt is made while another action is running."""
        loop = make_loop(enchanter)
        loop.tick()
        break_free(enchanter)
        enchanter.env.busy = True

        clock.advance(0.5)
        assert isinstance(loop.tick(), PendingRecapture)
        assert enchanter.executor.performed == []

        enchanter.env.busy = False
        clock.advance(0.5)
        loop.tick()
        assert enchanter.executor.performed == ["Dominate"]

    def test_pacify_before_recapture(self, enchanter, clock):
        """Test calming the freed unit before trying to capture it again."""
        loop = make_loop(
            enchanter,
            pacify_on_break=True,
            pacify_action=SpellAction(name="Mesmerize", target="current"),
            post_pacify_delay=1.5,
        )
        loop.tick()
        break_free(enchanter)

        clock.advance(0.5)
        state = loop.tick()
        assert state == PendingRecapture(unit_id=7, since=0.5, pacify_pending=False)
        assert enchanter.executor.performed == ["Mesmerize"]

        clock.advance(1.0)
        loop.tick()
        assert enchanter.executor.performed == ["Mesmerize"]

        clock.advance(0.5)
        loop.tick()
        assert enchanter.executor.performed == ["Mesmerize", "Dominate"]

    def test_pacify_not_ready_does_not_block_recapture(self, enchanter, clock):
        """Test that recapture goes ahead when the pacify cannot be performed."""
        loop = make_loop(
            enchanter,
            pacify_on_break=True,
            pacify_action=SpellAction(name="Mesmerize", target="current"),
            post_pacify_delay=1.5,
        )
        enchanter.executor.not_ready.add("Mesmerize")
        loop.tick()
        break_free(enchanter)

        clock.advance(0.5)
        state = loop.tick()
        assert state == PendingRecapture(unit_id=7, since=0.5, pacify_pending=False)
        assert enchanter.executor.performed == []

        clock.advance(0.5)
        loop.tick()
        assert enchanter.executor.performed == ["Dominate"]
        assert loop.next_attempt_at == 3.0

    def test_weak_unit_disengaged_then_lost(self, enchanter, clock):
        """Test a unit pulled out of the fight and then slipping control."""
        loop = make_loop(enchanter, break_hp=25.0)
        loop.tick()

        enchanter.env.captured = Spawn(7, "a_wolf", hp_pct=15.0)
        clock.advance(0.5)
        assert loop.tick() == Captured(unit_id=7, hp_pct=15.0)
        assert len(enchanter.env.called("disengage_captured")) == 1

        break_free(enchanter)
        clock.advance(0.5)
        assert loop.tick() == PendingRecapture(unit_id=7, since=1.0)
        assert len(enchanter.env.called("disengage_captured")) == 1
        assert enchanter.executor.performed == ["Dominate"]


class TestFreshCapture:
    """Tests for capturing with nothing held."""

    def test_manual_target_takes_precedence(self, make_agent):
        """Test that the operator's own selection is captured first."""
        agent = make_agent("enc1")
        agent.env.add_spawn(Spawn(3, "a_snake"))
        agent.env.nearest = agent.env.add_spawn(Spawn(9, "a_bear"))
        agent.env.selected_id = 3
        loop = make_loop(agent, target_filter="npc radius 60")

        loop.tick()
        assert agent.env.called("select_target") == []
        assert agent.executor.performed == ["Dominate"]
        assert agent.env.called("nearest_spawn") == []

    def test_filter_candidate(self, make_agent):
        """Test capturing the nearest match of the target filter."""
        agent = make_agent("enc1")
        agent.env.nearest = agent.env.add_spawn(Spawn(9, "a_bear"))
        loop = make_loop(agent, target_filter="npc radius 60")

        loop.tick()
        assert agent.env.selected_id == 9
        assert agent.executor.performed == ["Dominate"]

    def test_suppressed_candidates_skipped(self, make_agent, clock):
        """Test that suppressed units are never chosen."""
        agent = make_agent("enc1")
        agent.env.nearest = agent.env.add_spawn(Spawn(9, "a_bear"))
        agent.env.selected_id = 9
        loop = make_loop(agent, target_filter="npc radius 60")
        loop.suppress(9, clock())

        loop.tick()
        assert agent.executor.performed == []

    def test_no_candidate_no_attempt(self, make_agent):
        """Test an empty world."""
        agent = make_agent("enc1")
        loop = make_loop(agent)
        assert isinstance(loop.tick(), NoCapture)
        assert agent.executor.performed == []

    def test_suppression_expires(self, make_agent, clock):
        """Test that a suppressed unit becomes eligible again."""
        agent = make_agent("enc1")
        loop = make_loop(agent, suppress_seconds=6.0)
        loop.suppress(9, clock())

        assert loop.suppressed() == {9: 6.0}
        clock.set(6.0)
        loop.tick()
        assert loop.suppressed() == {}
