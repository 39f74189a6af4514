"""Action descriptors and lease-wrapped execution for Muster.

An action descriptor is a closed variant over the kinds of things an agent
can do. Performing one goes through the executor contract; when the action
is shareable, the runner wraps it in a lease so that two agents do not
spend the same limited effect at once.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal, Protocol, Union

from pydantic import BaseModel, Field

from .coordination.leases import LeaseCoordinator
from .environment import Environment
from .predicates import PredicateEvaluator, check_condition
from .targeting import apply_target, parse_target
from .utils.logging import get_logger

logger = get_logger("actions")

TARGET_SETTLE_SECONDS = 0.05


# =============================================================================
# Descriptors
# =============================================================================


class ActionBase(BaseModel):
    """Fields shared by every action kind."""

    name: str = ""
    enabled: bool = True
    target: str = "self"
    condition: str = ""
    cooldown: float = Field(default=0.0, ge=0, description="Seconds between two uses")
    cast_time: float = Field(default=0.0, ge=0, description="Declared time to perform")
    duration: float = Field(default=0.0, ge=0, description="Declared effect duration")

    @property
    def label(self) -> str:
        return self.name

    @property
    def key(self) -> str:
        """Identity used for per-action cooldown bookkeeping."""
        return f"{getattr(self, 'kind', 'action')}:{self.label}"


class SpellAction(ActionBase):
    kind: Literal["spell"] = "spell"
    gem: int = Field(default=1, ge=1)


class AltAbilityAction(ActionBase):
    kind: Literal["aa"] = "aa"
    ability_id: int | None = None

    @property
    def key(self) -> str:
        return f"aa:{self.ability_id if self.ability_id is not None else self.name}"


class DisciplineAction(ActionBase):
    kind: Literal["disc"] = "disc"


class ItemAction(ActionBase):
    kind: Literal["item"] = "item"


class SkillAction(ActionBase):
    kind: Literal["skill"] = "skill"


class CommandAction(ActionBase):
    kind: Literal["command"] = "command"
    command: str = ""

    @property
    def label(self) -> str:
        return self.command or self.name


ActionDescriptor = Annotated[
    Union[SpellAction, AltAbilityAction, DisciplineAction, ItemAction, SkillAction, CommandAction],
    Field(discriminator="kind"),
]

_DEFAULT_DURATIONS: dict[str, float] = {
    "spell": 3.0,
    "item": 4.0,
    "command": 1.0,
}


def estimate_duration(descriptor: ActionBase | None) -> float:
    """Seconds an action is expected to occupy its performer.

    Prefers the declared cast time, then the declared duration, then a
    per-kind default.
    """
    if descriptor is None:
        return 3.0
    if descriptor.cast_time > 0:
        return descriptor.cast_time
    if descriptor.duration > 0:
        return descriptor.duration
    return _DEFAULT_DURATIONS.get(getattr(descriptor, "kind", ""), 2.0)


# =============================================================================
# Executor Contract
# =============================================================================


class ActionExecutor(Protocol):
    """Performs actions in the world."""

    def can_perform(self, descriptor: ActionBase) -> bool: ...

    def execute(self, descriptor: ActionBase) -> None: ...

    def estimate_duration(self, descriptor: ActionBase) -> float: ...


class BaseActionExecutor(ABC):
    """Abstract base class for executors.

    Subclasses answer readiness for each kind and perform the effect;
    this class handles the per-descriptor cooldown and completion times.

    Example:
        class ClientExecutor(BaseActionExecutor):
            def is_ready(self, descriptor):
                return client.ready(descriptor.name)

            def perform(self, descriptor):
                client.run(descriptor)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize the executor.

        Args:
            clock: Time source in seconds.
        """
        self._clock = clock
        self._completed_at: dict[str, float] = {}
        self.last_action: str = ""

    @abstractmethod
    def is_ready(self, descriptor: ActionBase) -> bool:
        """Kind-specific readiness (spell ready, item timer, ...)."""
        pass

    @abstractmethod
    def perform(self, descriptor: ActionBase) -> None:
        """Issue the effect in the world."""
        pass

    def completed_at(self, descriptor: ActionBase) -> float | None:
        return self._completed_at.get(descriptor.key)

    def can_perform(self, descriptor: ActionBase) -> bool:
        if descriptor.cooldown > 0:
            last = self._completed_at.get(descriptor.key)
            if last is not None and self._clock() - last < descriptor.cooldown:
                return False
        return self.is_ready(descriptor)

    def execute(self, descriptor: ActionBase) -> None:
        self.perform(descriptor)
        self._completed_at[descriptor.key] = self._clock()
        kind = getattr(descriptor, "kind", "action")
        self.last_action = f"{descriptor.label or 'unknown'} ({kind})"

    def estimate_duration(self, descriptor: ActionBase) -> float:
        return estimate_duration(descriptor)


# =============================================================================
# Lease-wrapped Runner
# =============================================================================


@dataclass
class ShareSpec:
    """How an action is shared with peers through a lease."""

    lease_type: str
    lease_key: str
    duration: float | None = None  # None = executor's estimate
    metadata: dict[str, Any] = field(default_factory=dict)
    allow_overlap: bool = False  # Act even if a peer holds the lease


class ActionRunner:
    """Checks, claims, targets and executes actions.

    Example:
        runner = ActionRunner(executor, leases, evaluator, env=env)

        performed = runner.perform(
            SpellAction(name="Complete Heal", gem=4, target="maintank"),
            share=ShareSpec("heal", "CH:tank", duration=3.0),
        )
    """

    def __init__(
        self,
        executor: ActionExecutor,
        leases: LeaseCoordinator | None = None,
        evaluator: PredicateEvaluator | None = None,
        debug: bool = False,
        env: Environment | None = None,
        settle_delay: float = TARGET_SETTLE_SECONDS,
    ):
        """Initialize the runner.

        Args:
            executor: Performs the actions.
            leases: Coordinator used for shareable actions.
            evaluator: Evaluates action conditions.
            debug: Log condition errors as warnings.
            env: World access used to select each action's target.
            settle_delay: Seconds to wait after selecting a target.
        """
        self._executor = executor
        self._leases = leases
        self._evaluator = evaluator
        self._env = env
        self._settle_delay = settle_delay
        self.debug = debug

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    def perform(
        self,
        descriptor: ActionBase,
        context: dict[str, Any] | None = None,
        share: ShareSpec | None = None,
    ) -> bool:
        """Perform an action if it is enabled, ready, allowed and unclaimed.

        Args:
            descriptor: The action.
            context: Values visible to the action's condition.
            share: Lease to claim before the action.

        Returns:
            True if the action was executed.
        """
        if not descriptor.enabled:
            return False
        if not descriptor.label:
            return False
        if not self._executor.can_perform(descriptor):
            return False
        if not check_condition(self._evaluator, descriptor.condition, context, self.debug):
            return False

        if share is not None and self._leases is not None:
            duration = share.duration
            if duration is None:
                duration = self._executor.estimate_duration(descriptor)
            claimed, existing = self._leases.try_claim(
                share.lease_type,
                share.lease_key,
                duration,
                share.metadata,
                allow_overlap=share.allow_overlap,
            )
            if not claimed:
                logger.debug(
                    "Skipping %s: %s/%s held by %s",
                    descriptor.label,
                    share.lease_type,
                    share.lease_key,
                    existing.holder_id if existing else "?",
                )
                return False

        if self._env is not None and apply_target(parse_target(descriptor.target), self._env):
            self._env.delay(self._settle_delay)

        self._executor.execute(descriptor)
        return True
