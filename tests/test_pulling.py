"""Tests for the cooperative pulling machine."""

import logging

import pytest

from muster.config import CampSettings, PullSettings
from muster.environment import Spawn
from muster.roles.pulling import (
    PULL_LEASE_TYPE,
    Acquired,
    Idle,
    PullPhase,
    TaskClaimStateMachine,
    TaskState,
)
from muster.types import Location, PullStatus, Vitals


def make_puller(agent, pull=None, **pull_overrides):
    if pull is None:
        pull = PullSettings(**{"enabled": True, "use_opener": False, **pull_overrides})
    camp = CampSettings(enabled=True, anchor=Location(x=0.0, y=0.0), radius=40.0)
    transitions = []
    machine = TaskClaimStateMachine(
        agent_id=agent.agent_id,
        pull=pull,
        camp=camp,
        env=agent.env,
        runner=agent.runner,
        leases=agent.leases,
        clock=agent.clock,
        claims_store=agent.claims_store,
        on_transition=lambda old, new: transitions.append((old, new)),
    )
    machine.transitions = transitions
    return machine


@pytest.fixture
def monk(make_agent):
    agent = make_agent("monk1")
    agent.env.nearest = agent.env.add_spawn(Spawn(5, "a_bat", distance=100.0))
    return agent


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def pull_log():
    logger = logging.getLogger("muster.roles.pulling")
    handler = RecordingHandler()
    level = logger.level
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)
    logger.setLevel(level)


class TestStartingAPull:
    """Tests for leaving Idle."""

    def test_idle_agent_claims_and_engages(self, monk, backend):
        """Test the path from Idle to an engaged pull."""
        machine = make_puller(monk)

        state = machine.tick()

        assert isinstance(state, Acquired)
        assert state.phase == PullPhase.ENGAGING
        assert state.target_id == 5
        assert machine.pull_status == PullStatus.PULLING
        assert machine.transitions == [(TaskState.IDLE, TaskState.CLAIMING), (TaskState.CLAIMING, TaskState.ACQUIRED)]

        lease = backend.raw("team")["actions"][PULL_LEASE_TYPE]["PULLER"]
        assert lease["holder_id"] == "monk1"
        assert lease["metadata"]["target_id"] == 5
        assert backend.raw("pull_claims")["claimants"]["monk1"]["status"] == "pulling"

        assert monk.env.called("select_target") == [("select_target", 5)]
        assert monk.env.called("navigate_to_spawn") == [("navigate_to_spawn", 5)]
        assert monk.env.attacking

    def test_opener_and_stick(self, monk):
        """Test the opener and the no-navigation approach."""
        machine = make_puller(monk, use_nav=False, use_opener=True)

        machine.tick()

        assert monk.executor.performed == ["Phantom Shadow"]
        assert monk.env.called("stick_to_target") == [("stick_to_target",)]

    def test_search_uses_pull_radius(self, monk):
        """Test the spawn search string."""
        make_puller(monk, radius=200.0).tick()
        assert ("nearest_spawn", "npc radius 200 zradius 50") in monk.env.calls

    @pytest.mark.parametrize("combat,hauled", [(True, 0), (False, 2)])
    def test_gates_block_new_pull(self, monk, combat, hauled):
        """Test that combat and a full haul keep the agent home."""
        monk.env.combat = combat
        monk.env.hauled = hauled
        machine = make_puller(monk)

        assert isinstance(machine.tick(), Idle)
        assert monk.env.called("nearest_spawn") == []

    def test_no_target_stays_idle(self, monk):
        """Test that an empty search changes nothing."""
        monk.env.nearest = None
        assert isinstance(make_puller(monk).tick(), Idle)

    def test_disabled_does_nothing(self, monk):
        """Test a machine with pulling switched off."""
        machine = make_puller(monk, enabled=False)
        assert isinstance(machine.tick(), Idle)
        assert monk.env.calls == []


class TestMutualExclusion:
    """Tests for two pullers sharing one camp."""

    def test_peer_yields_to_claim_roster(self, monk, make_agent, clock):
        """Test that an advertised pull keeps a peer idle."""
        rival = make_agent("monk2")
        rival.env.nearest = rival.env.add_spawn(Spawn(6, "a_rat", distance=90.0))
        first = make_puller(monk)
        second = make_puller(rival)

        first.tick()
        clock.advance(0.5)
        assert isinstance(second.tick(), Idle)
        assert second.status_text == "Waiting: monk1 pulling"

    def test_peer_yields_to_lease_without_roster(self, monk, make_agent, clock):
        """Test that the lease alone keeps pullers apart."""
        rival = make_agent("monk2")
        rival.env.nearest = rival.env.add_spawn(Spawn(6, "a_rat", distance=90.0))
        first = make_puller(monk, sync_enabled=False)
        second = make_puller(rival, sync_enabled=False)

        first.tick()
        clock.advance(0.5)
        assert isinstance(second.tick(), Idle)
        assert rival.env.called("nearest_spawn") == []

    def test_never_acquired_while_peer_lease_live(self, monk, make_agent, clock, backend):
        """Test exclusion across a whole pull cycle."""
        rival = make_agent("monk2")
        rival.env.nearest = rival.env.add_spawn(Spawn(6, "a_rat", distance=90.0))
        first = make_puller(monk, stale_seconds=10.0)
        second = make_puller(rival, stale_seconds=10.0)

        for step in range(400):
            clock.set(step * 0.25)
            if step == 40:
                # First puller reaches the mob and heads home
                monk.env.spawns[5] = Spawn(5, "a_bat", distance=10.0)
            first.tick()
            second.tick()
            lease = backend.raw("team")["actions"].get(PULL_LEASE_TYPE, {}).get("PULLER")
            for machine, agent_id in ((first, "monk1"), (second, "monk2")):
                if isinstance(machine.state, Acquired):
                    assert lease is not None and lease["holder_id"] == agent_id
            if isinstance(first.state, Acquired) and isinstance(second.state, Acquired):
                pytest.fail("both pullers acquired at once")

    def test_second_puller_goes_after_first_finishes(self, monk, make_agent, clock):
        """Test that the role passes on once released."""
        rival = make_agent("monk2")
        rival.env.nearest = rival.env.add_spawn(Spawn(6, "a_rat", distance=90.0))
        first = make_puller(monk)
        second = make_puller(rival)

        first.tick()
        monk.env.spawns[5] = Spawn(5, "a_bat", distance=10.0)
        clock.advance(1.0)
        first.tick()
        clock.advance(1.0)
        assert isinstance(first.tick(), Idle)

        clock.advance(1.5)
        assert isinstance(second.tick(), Acquired)


class TestDuringAPull:
    """Tests for the Acquired state."""

    def test_engaged_target_turns_home(self, monk, backend, clock):
        """Test the switch to returning once the mob is close."""
        machine = make_puller(monk)
        machine.tick()

        monk.env.spawns[5] = Spawn(5, "a_bat", distance=20.0)
        clock.advance(1.0)
        state = machine.tick()

        assert state.phase == PullPhase.RETURNING
        assert machine.pull_status == PullStatus.RETURNING
        assert not monk.env.attacking
        assert ("navigate_to", Location(x=0.0, y=0.0)) in monk.env.calls
        assert backend.raw("pull_claims")["claimants"]["monk1"]["status"] == "returning"
        assert backend.raw("team")["actions"]["pull"]["PULLER"]["metadata"]["status"] == "returning"

    def test_hauling_away_from_camp_turns_home(self, monk, clock):
        """Test turning home with mobs in tow, even before reaching the target."""
        machine = make_puller(monk)
        machine.tick()

        monk.env.hauled = 1
        monk.env.location = Location(x=50.0, y=0.0)
        clock.advance(1.0)
        assert machine.tick().phase == PullPhase.RETURNING

    def test_returning_completes_at_camp(self, monk, backend, clock):
        """Test the end of a successful pull."""
        machine = make_puller(monk)
        machine.tick()
        monk.env.spawns[5] = Spawn(5, "a_bat", distance=20.0)
        monk.env.location = Location(x=60.0, y=0.0)
        clock.advance(1.0)
        machine.tick()

        clock.advance(1.0)
        assert machine.tick().phase == PullPhase.RETURNING

        monk.env.location = Location(x=10.0, y=0.0)
        clock.advance(1.0)
        assert isinstance(machine.tick(), Idle)
        assert machine.status_text == "Pull complete"
        assert "pull" not in backend.raw("team")["actions"]
        assert backend.raw("pull_claims")["claimants"]["monk1"]["status"] == "idle"

    def test_feign_when_hauling_too_much(self, monk, clock):
        """Test the emergency action at low health with several mobs."""
        machine = make_puller(monk)
        machine.tick()

        monk.env.hauled = 2
        monk.env.current_vitals = Vitals(hp=20.0)
        monk.env.location = Location(x=10.0, y=0.0)
        clock.advance(1.0)
        machine.tick()

        assert "Feign Death" in monk.executor.performed

    def test_target_lost_abandons(self, monk, backend, clock):
        """Test that a dead or vanished target ends the pull."""
        machine = make_puller(monk)
        machine.tick()

        monk.env.spawns[5] = Spawn(5, "a_bat", is_corpse=True)
        clock.advance(1.0)
        assert isinstance(machine.tick(), Idle)
        assert machine.status_text == "Pull abandoned: target lost"
        assert "pull" not in backend.raw("team")["actions"]

    def test_timeout_abandons(self, monk, clock):
        """Test that a pull cannot run forever."""
        machine = make_puller(monk, max_pull_seconds=20.0)
        machine.tick()

        clock.advance(21.0)
        assert isinstance(machine.tick(), Idle)
        assert machine.status_text == "Pull abandoned: timed out"

    def test_timeout_abandon_reports_target(self, monk, clock, pull_log):
        """Test that an abandon names the target it gave up on."""
        machine = make_puller(monk, max_pull_seconds=20.0)
        machine.tick()

        clock.advance(21.0)
        machine.tick()
        assert "Pull abandoned | agent=monk1 target_id=5 reason=timed out" in pull_log.messages

    def test_lease_renewed_at_half_life(self, monk, clock):
        """Test that a long pull keeps its lease alive."""
        machine = make_puller(monk, stale_seconds=10.0)
        machine.tick()

        clock.set(6.0)
        state = machine.tick()
        assert state.lease_expires_at == 16.0
        assert monk.leases.peek(PULL_LEASE_TYPE, "PULLER").expires_at == 16.0

    def test_lost_lease_abandons(self, monk, make_agent, clock, backend):
        """Test giving up when a peer took over the role lease."""
        machine = make_puller(monk, stale_seconds=10.0)
        machine.tick()

        thief = make_agent("monk2")
        thief.leases.try_claim(PULL_LEASE_TYPE, "PULLER", duration=30.0, allow_overlap=True)

        clock.set(6.0)
        assert isinstance(machine.tick(), Idle)
        assert machine.status_text == "Pull abandoned: lease lost"
        assert backend.raw("team")["actions"]["pull"]["PULLER"]["holder_id"] == "monk2"

    def test_disabling_mid_pull_abandons(self, monk, backend):
        """Test that switching pulling off releases the role."""
        pull = PullSettings(enabled=True, use_opener=False)
        machine = make_puller(monk, pull=pull)
        machine.tick()

        pull.enabled = False
        assert isinstance(machine.tick(), Idle)
        assert "pull" not in backend.raw("team")["actions"]
