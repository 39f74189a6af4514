"""Agent settings for Muster.

Settings are a tree of pydantic models persisted as one JSON file per agent.
Missing fields take their defaults, so an old file keeps working after new
settings are added.
"""

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .actions import ActionDescriptor, AltAbilityAction, SkillAction, SpellAction
from .coordination.documents import CLAIM_DOCUMENT, ROTATION_DOCUMENT, TEAM_DOCUMENT
from .exceptions import ConfigError
from .types import Location
from .utils.logging import get_logger

logger = get_logger("config")


class CoordinationSettings(BaseModel):
    """Where the shared documents live and how fresh they are kept."""

    document_dir: str = Field(default="./shared", description="Directory of the shared documents")
    team_document: str = TEAM_DOCUMENT
    rotation_document: str = ROTATION_DOCUMENT
    claim_document: str = CLAIM_DOCUMENT
    team_refresh: float = Field(default=0.25, gt=0, description="Team document cache age (s)")
    roster_refresh: float = Field(default=1.0, gt=0, description="Roster document cache age (s)")
    presence_ttl: float = Field(default=10.0, gt=0, description="Seconds before a silent agent is dead")
    presence_interval: float = Field(default=1.0, ge=0, description="Min seconds between heartbeats")
    roster_ttl: float = Field(default=60.0, gt=0, description="Seconds before a rotation entry is stale")


class CampSettings(BaseModel):
    """Static anchor used by geometry checks."""

    enabled: bool = False
    anchor: Location | None = None
    radius: float = Field(default=40.0, gt=0)
    return_to_camp: bool = True


class PullSettings(BaseModel):
    """Cooperative pulling role."""

    enabled: bool = False
    radius: float = Field(default=120.0, gt=0, description="Search radius for pull targets")
    min_range: float = Field(default=30.0, ge=0, description="Distance from camp that triggers the way back")
    engage_distance: float = Field(default=35.0, gt=0, description="Target distance that counts as engaged")
    max_active: int = Field(default=2, ge=1, description="Hauled entities that block a new pull")
    use_nav: bool = True
    use_opener: bool = True
    opener: ActionDescriptor = Field(
        default_factory=lambda: AltAbilityAction(name="Phantom Shadow", ability_id=968)
    )
    feign: ActionDescriptor = Field(default_factory=lambda: SkillAction(name="Feign Death"))
    feign_pct_hp: float = Field(default=35.0, ge=0, le=100)
    tag: str = "PULLER"
    sync_enabled: bool = True
    stale_seconds: float = Field(default=30.0, gt=0)
    max_pull_seconds: float = Field(default=90.0, gt=0)

    @property
    def search(self) -> str:
        return f"npc radius {int(self.radius)} zradius 50"


class RotationSettings(BaseModel):
    """Strict rotation of one shared action across several agents."""

    enabled: bool = False
    action: ActionDescriptor = Field(
        default_factory=lambda: SpellAction(name="Complete Heal", gem=4, target="current")
    )
    period: float = Field(default=3.0, gt=0, description="Seconds between two members' turns")
    order: int = Field(default=1, ge=1, description="1-based position in the rotation")
    chain_size: int = Field(default=3, ge=1, description="Members in the rotation")
    start_delay: float = Field(default=0.0, ge=0)
    target: str = "maintank"
    lease_type: str = "heal"
    announce: bool = True
    channel: str = "/rs"
    message: str = "CH %s (#%d/%d)"

    @property
    def rotation_seconds(self) -> float:
        return self.period * self.chain_size


class CaptureSettings(BaseModel):
    """Capture and recapture of a subordinate unit."""

    enabled: bool = False
    action: ActionDescriptor = Field(default_factory=lambda: SpellAction(name="", target="current"))
    pacify_action: ActionDescriptor | None = None
    pacify_on_break: bool = False
    break_hp: float = Field(default=25.0, ge=0, le=100)
    recapture_on_loss: bool = True
    recapture_delay: float = Field(default=2.0, ge=0, description="Seconds between capture attempts")
    suppress_seconds: float = Field(default=6.0, ge=0, description="Recapture window and suppression length")
    post_pacify_delay: float = Field(default=1.5, ge=0)
    disengage_interval: float = Field(default=0.75, ge=0)
    target_filter: str = ""
    settle_delay: float = Field(default=0.1, ge=0)


class SelfHealSettings(BaseModel):
    """Heal this agent when its own health is low."""

    enabled: bool = True
    threshold: float = Field(default=50.0, ge=0, le=100)
    action: ActionDescriptor = Field(default_factory=lambda: SpellAction(name=""))


class GroupHealSettings(BaseModel):
    """Heal one group member when their health falls to a threshold."""

    enabled: bool = True
    target: str = Field(default="maintank", description="Member to watch: a name or a role")
    threshold: float = Field(default=60.0, ge=0, le=100)
    action: ActionDescriptor = Field(default_factory=lambda: SpellAction(name="", target="maintank"))
    share_duration: float | None = Field(default=None, gt=0, description="Lease seconds; None = estimate")


class BuffEntry(BaseModel):
    """One buff kept up on a target, shared so peers do not double it."""

    action: ActionDescriptor
    share_duration: float | None = Field(default=None, gt=0)


class EvacSettings(BaseModel):
    """Emergency evacuation; the action's condition decides when."""

    enabled: bool = False
    action: ActionDescriptor = Field(default_factory=lambda: SpellAction(name=""))
    share_duration: float | None = Field(default=None, gt=0)


class SupportSettings(BaseModel):
    """Shared heals, buffs and utility actions."""

    enabled: bool = False
    heals: bool = True
    buffs: bool = True
    utility: bool = True
    self_heal: SelfHealSettings = Field(default_factory=SelfHealSettings)
    group_heals: list[GroupHealSettings] = Field(default_factory=list)
    buff_list: list[BuffEntry] = Field(default_factory=list)
    buffs_out_of_combat_only: bool = False
    evac: EvacSettings = Field(default_factory=EvacSettings)


class AgentSettings(BaseModel):
    """Complete settings for one agent."""

    agent_id: str = "agent"
    role: str = ""
    debug: bool = False
    tick_interval: float = Field(default=0.05, gt=0)
    auto_save: bool = False
    save_interval: float = Field(default=300.0, gt=0)
    coordination: CoordinationSettings = Field(default_factory=CoordinationSettings)
    camp: CampSettings = Field(default_factory=CampSettings)
    pull: PullSettings = Field(default_factory=PullSettings)
    rotation: RotationSettings = Field(default_factory=RotationSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    support: SupportSettings = Field(default_factory=SupportSettings)


def _error_lines(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in item['loc']) or 'root'}: {item['msg']}"
        for item in error.errors()
    ]


def build_settings(data: dict[str, Any] | None = None, **overrides: Any) -> AgentSettings:
    """Build settings from a mapping, raising on invalid values.

    Raises:
        ConfigError: If any field fails validation.
    """
    payload = {**(data or {}), **overrides}
    try:
        return AgentSettings.model_validate(payload)
    except ValidationError as e:
        raise ConfigError("Invalid settings", _error_lines(e)) from e


def load_settings(path: str | Path, **overrides: Any) -> AgentSettings:
    """Load settings from a JSON file.

    A missing file yields defaults. An unreadable or invalid file is logged
    and also yields defaults, so a bad edit never stops an agent.

    Args:
        path: Settings file.
        **overrides: Top-level fields applied on top of the file (e.g. agent_id).
    """
    path = Path(path)
    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data = loaded
            else:
                logger.error("Settings file %s is not a mapping, using defaults", path)
        except (OSError, ValueError) as e:
            logger.error("Failed to load %s: %s", path, e)

    try:
        return build_settings(data, **overrides)
    except ConfigError as e:
        logger.error("Failed to load %s: %s", path, e)
        return build_settings(None, **overrides)


def save_settings(settings: AgentSettings, path: str | Path) -> bool:
    """Write settings to a JSON file atomically.

    Returns:
        True if the file was written.
    """
    path = Path(path)
    temp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(settings.model_dump(mode="json"), f, indent=2, sort_keys=True)
        os.replace(temp_path, path)
    except OSError as e:
        logger.error("Failed to save %s: %s", path, e)
        return False
    logger.info("Settings saved to %s", path)
    return True
