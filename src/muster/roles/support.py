"""Shared heals, buffs and utility actions for Muster.

Several agents can often spend the same limited effect: heal the same
member, refresh the same buff, evacuate the same group. Each such action
is wrapped in a lease keyed by what it is spent on, so one agent acts and
its peers skip it until the lease runs out:

- self heal: ``("heal", "<agent>:<action>")``, may overlap a peer's lease
- group heal: ``("heal", "<member>:<action>")``, once the member's health
  is at or below the threshold
- buff: ``("buff", "<target>:<action>")``
- evac: ``("utility", "evac:<action>")``, when the action's condition holds
"""

from typing import Any

from ..actions import ActionBase, ActionRunner, ShareSpec
from ..config import BuffEntry, GroupHealSettings, SupportSettings
from ..coordination.store import Clock
from ..environment import Environment, Spawn
from ..targeting import resolve_target_name
from ..utils.logging import StructuredLogger

HEAL_LEASE_TYPE = "heal"
BUFF_LEASE_TYPE = "buff"
UTILITY_LEASE_TYPE = "utility"


class SupportRole:
    """Runs the shared heal, buff and utility actions of one agent.

    Example:
        support = SupportRole(
            agent_id="clr1",
            settings=settings.support,
            env=env,
            runner=runner,
            clock=time.time,
        )

        while running:
            support.tick()
    """

    def __init__(
        self,
        agent_id: str,
        settings: SupportSettings,
        env: Environment,
        runner: ActionRunner,
        clock: Clock,
    ):
        """Initialize the role.

        Args:
            agent_id: This agent's identity.
            settings: Support settings, read live on every tick.
            env: World access.
            runner: Performs the actions under their leases.
            clock: Time source in seconds.
        """
        self._agent_id = agent_id
        self._settings = settings
        self._env = env
        self._runner = runner
        self._clock = clock
        self._log = StructuredLogger("roles.support", agent=agent_id)
        self.last_performed_at: float | None = None
        self.status_text = ""

    def tick(self) -> list[str]:
        """Run every enabled support action once.

        Returns:
            Labels of the actions performed this tick.
        """
        settings = self._settings
        if not settings.enabled:
            return []

        performed: list[str] = []
        if settings.heals:
            performed += self.run_heals()
        if settings.buffs:
            performed += self.run_buffs()
        if settings.utility:
            performed += self.run_utility()

        if performed:
            self.last_performed_at = self._clock()
            self.status_text = f"Support: {', '.join(performed)}"
        return performed

    # -------------------------------------------------------------------------
    # Heals
    # -------------------------------------------------------------------------

    def run_heals(self) -> list[str]:
        performed = self._self_heal()
        for heal in self._settings.group_heals:
            performed += self._group_heal(heal)
        return performed

    def _self_heal(self) -> list[str]:
        heal = self._settings.self_heal
        if not heal.enabled or self._env.vitals().hp > heal.threshold:
            return []
        share = ShareSpec(
            lease_type=HEAL_LEASE_TYPE,
            lease_key=f"{self._agent_id}:{heal.action.label or 'self'}",
            metadata={"target": self._agent_id, "mode": "self"},
            allow_overlap=True,
        )
        return self._perform(heal.action, None, share)

    def _group_heal(self, heal: GroupHealSettings) -> list[str]:
        if not heal.enabled or not heal.target:
            return []
        name = resolve_target_name(heal.target, self._env, self._agent_id)
        member = self._env.find_player(name)
        if member is None or not member.targetable or member.hp_pct > heal.threshold:
            return []

        member_name = member.name or name
        share = ShareSpec(
            lease_type=HEAL_LEASE_TYPE,
            lease_key=f"{member_name}:{heal.action.label or 'heal'}",
            duration=heal.share_duration,
            metadata={"target": member_name, "threshold": heal.threshold, "action": heal.action.label},
        )
        return self._perform(heal.action, member, share)

    # -------------------------------------------------------------------------
    # Buffs
    # -------------------------------------------------------------------------

    def run_buffs(self) -> list[str]:
        if self._settings.buffs_out_of_combat_only and self._env.in_combat():
            return []
        performed: list[str] = []
        for entry in self._settings.buff_list:
            performed += self._buff(entry)
        return performed

    def _buff_target(self, token: str) -> str:
        if token.strip().lower() in ("current", "target"):
            selected = self._env.selected_target()
            if selected is not None and selected.name:
                return selected.name
        return resolve_target_name(token, self._env, self._agent_id)

    def _buff(self, entry: BuffEntry) -> list[str]:
        action = entry.action
        target = self._buff_target(action.target)
        share = ShareSpec(
            lease_type=BUFF_LEASE_TYPE,
            lease_key=f"{target}:{action.label or action.kind}",
            duration=entry.share_duration,
            metadata={"target": target, "action": action.label, "kind": action.kind},
        )
        return self._perform(action, None, share)

    # -------------------------------------------------------------------------
    # Utility
    # -------------------------------------------------------------------------

    def run_utility(self) -> list[str]:
        evac = self._settings.evac
        if not evac.enabled or not evac.action.label:
            return []
        share = ShareSpec(
            lease_type=UTILITY_LEASE_TYPE,
            lease_key=f"evac:{evac.action.label}",
            duration=evac.share_duration,
            metadata={"action": evac.action.label, "reason": "evac"},
        )
        return self._perform(evac.action, None, share)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _context(self, target: Spawn | None) -> dict[str, Any]:
        return {
            "agent_id": self._agent_id,
            "me": self._env.vitals(),
            "in_combat": self._env.in_combat(),
            "target": target,
        }

    def _perform(self, action: ActionBase, target: Spawn | None, share: ShareSpec) -> list[str]:
        if not self._runner.perform(action, self._context(target), share):
            return []
        self._log.debug("Performed", action=action.label, lease=f"{share.lease_type}/{share.lease_key}")
        return [action.label]
