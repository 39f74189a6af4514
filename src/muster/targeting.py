"""Target strings for Muster.

Settings name targets with short strings:

- "" / "self" / "current" / "target": keep whatever is selected
- "none" / "clear": drop the selection
- "maintank" / "mainassist": the member holding that group role
- "xtar<N>": extended target slot N
- "name:<X>": the entity named X (spaces allowed)
- anything else: a plain name
"""

import re
from dataclasses import dataclass
from enum import Enum

from .environment import Environment

_XTAR_PATTERN = re.compile(r"^xtar(\d+)$", re.IGNORECASE)


class TargetKind(str, Enum):
    """How a target string selects its entity."""

    KEEP = "keep"
    CLEAR = "clear"
    MAIN_TANK = "maintank"
    MAIN_ASSIST = "mainassist"
    XTARGET = "xtarget"
    NAME = "name"


@dataclass(frozen=True)
class TargetSpec:
    """A parsed target string."""

    kind: TargetKind
    value: str = ""

    @property
    def slot(self) -> int:
        return int(self.value) if self.kind == TargetKind.XTARGET else 0


def parse_target(text: str | None) -> TargetSpec:
    """Parse a target string from settings."""
    raw = (text or "").strip()
    lowered = raw.lower()
    if lowered in ("", "self", "current", "target"):
        return TargetSpec(TargetKind.KEEP)
    if lowered in ("none", "clear"):
        return TargetSpec(TargetKind.CLEAR)
    if lowered == "maintank":
        return TargetSpec(TargetKind.MAIN_TANK)
    if lowered == "mainassist":
        return TargetSpec(TargetKind.MAIN_ASSIST)
    match = _XTAR_PATTERN.match(raw)
    if match:
        return TargetSpec(TargetKind.XTARGET, match.group(1))
    if lowered.startswith("name:"):
        return TargetSpec(TargetKind.NAME, raw[5:].strip())
    return TargetSpec(TargetKind.NAME, raw)


def apply_target(spec: TargetSpec, env: Environment) -> bool:
    """Issue the selection side effect for a target spec.

    Returns:
        True if a selection command was issued.
    """
    if spec.kind == TargetKind.CLEAR:
        env.clear_target()
        return True
    if spec.kind == TargetKind.MAIN_TANK:
        name = env.group_role("maintank")
        if name:
            env.select_by_name(name)
            return True
        return False
    if spec.kind == TargetKind.MAIN_ASSIST:
        name = env.group_role("mainassist")
        if name:
            env.assist(name)
            return True
        return False
    if spec.kind == TargetKind.XTARGET and spec.slot > 0:
        env.select_xtarget(spec.slot)
        return True
    if spec.kind == TargetKind.NAME and spec.value:
        env.select_by_name(spec.value)
        return True
    return False


def resolve_target_name(text: str | None, env: Environment, self_name: str) -> str:
    """Resolve a target string to a concrete name.

    Role targets fall back to the agent itself when nobody holds the role.
    """
    spec = parse_target(text)
    if spec.kind == TargetKind.MAIN_TANK:
        return env.group_role("maintank") or self_name
    if spec.kind == TargetKind.MAIN_ASSIST:
        return env.group_role("mainassist") or self_name
    if spec.kind == TargetKind.NAME and spec.value:
        return spec.value
    if spec.kind == TargetKind.XTARGET:
        return f"xtar{spec.value}"
    return self_name
