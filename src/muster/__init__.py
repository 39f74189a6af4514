"""Muster - cooperative coordination for independent game agents.

Usage:
    from muster import AgentRuntime, ControlSurface, load_settings

    settings = load_settings("monk1.json", agent_id="monk1")
    runtime = AgentRuntime(settings, env, executor, settings_path="monk1.json")
    surface = ControlSurface(runtime)

    surface.handle("pull on")
    runtime.run()
"""

__version__ = "0.1.0"

# Types
from .types import (
    ClaimantEntry,
    CommandType,
    Lease,
    Location,
    PresenceEntry,
    PullStatus,
    RotationRosterEntry,
    Vitals,
)

# Exceptions
from .exceptions import (
    ConfigError,
    DocumentError,
    DocumentReadError,
    DocumentWriteError,
    MusterError,
    UnknownCommandError,
)

# Configuration
from .config import (
    AgentSettings,
    CampSettings,
    CaptureSettings,
    CoordinationSettings,
    PullSettings,
    RotationSettings,
    SupportSettings,
    build_settings,
    load_settings,
    save_settings,
)

# Actions
from .actions import (
    ActionDescriptor,
    ActionExecutor,
    ActionRunner,
    AltAbilityAction,
    BaseActionExecutor,
    CommandAction,
    DisciplineAction,
    ItemAction,
    ShareSpec,
    SkillAction,
    SpellAction,
    estimate_duration,
)
from .predicates import PredicateEvaluator, SafeExpressionEvaluator, check_condition
from .targeting import TargetKind, TargetSpec, apply_target, parse_target, resolve_target_name

# Coordination Layer
from .coordination import (
    FileBackend,
    InMemoryBackend,
    LeaseCoordinator,
    PresenceRegistry,
    SharedDocumentStore,
)

# Roles
from .roles import CaptureControlLoop, RotationScheduler, SupportRole, TaskClaimStateMachine

# Host
from .environment import Environment, Spawn
from .control import Command, CommandResult, ControlSurface
from .runtime import AgentRuntime

# Utilities
from .utils import StructuredLogger, configure_logging, get_logger

__all__ = [
    "__version__",
    # Types
    "Location",
    "Vitals",
    "PresenceEntry",
    "PullStatus",
    "Lease",
    "RotationRosterEntry",
    "ClaimantEntry",
    "CommandType",
    # Exceptions
    "MusterError",
    "DocumentError",
    "DocumentReadError",
    "DocumentWriteError",
    "ConfigError",
    "UnknownCommandError",
    # Configuration
    "AgentSettings",
    "CoordinationSettings",
    "CampSettings",
    "PullSettings",
    "RotationSettings",
    "CaptureSettings",
    "SupportSettings",
    "build_settings",
    "load_settings",
    "save_settings",
    # Actions
    "ActionDescriptor",
    "SpellAction",
    "AltAbilityAction",
    "DisciplineAction",
    "ItemAction",
    "SkillAction",
    "CommandAction",
    "estimate_duration",
    "ActionExecutor",
    "BaseActionExecutor",
    "ActionRunner",
    "ShareSpec",
    "PredicateEvaluator",
    "SafeExpressionEvaluator",
    "check_condition",
    "TargetKind",
    "TargetSpec",
    "parse_target",
    "apply_target",
    "resolve_target_name",
    # Coordination Layer
    "SharedDocumentStore",
    "InMemoryBackend",
    "FileBackend",
    "PresenceRegistry",
    "LeaseCoordinator",
    # Roles
    "TaskClaimStateMachine",
    "RotationScheduler",
    "CaptureControlLoop",
    "SupportRole",
    # Host
    "Environment",
    "Spawn",
    "Command",
    "CommandResult",
    "ControlSurface",
    "AgentRuntime",
    # Utilities
    "configure_logging",
    "get_logger",
    "StructuredLogger",
]
