"""Operator control surface for Muster.

Accepts one-line text commands from the host (a chat command, a console)
and applies them to a running agent:

- help
- pause / resume
- save
- camp set | camp clear
- pull on|off, rotation on|off, capture on|off, support on|off
- status
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .exceptions import UnknownCommandError
from .types import CommandType, Location
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .runtime import AgentRuntime

logger = get_logger("control")

HELP_TEXT = (
    "Commands: help | pause | resume | save | camp set|clear | "
    "pull on|off | rotation on|off | capture on|off | support on|off | status"
)

_SWITCHES = {"on": True, "off": False, "true": True, "false": False, "1": True, "0": False}


@dataclass
class Command:
    """A parsed operator command."""
    type: CommandType
    args: list[str] = field(default_factory=list)
    raw: str = ""

    @classmethod
    def parse(cls, line: str) -> "Command":
        """Parse a command line.

        Raises:
            UnknownCommandError: If the first word is not a known command.
        """
        words = line.strip().split()
        if not words:
            return cls(type=CommandType.HELP, raw=line)
        verb = words[0].lower().lstrip("/")
        try:
            command_type = CommandType(verb)
        except ValueError:
            raise UnknownCommandError(verb) from None
        return cls(type=command_type, args=[w.lower() for w in words[1:]], raw=line)


@dataclass
class CommandResult:
    """Result of executing a command."""
    success: bool
    message: str = ""
    result: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "message": self.message,
            "result": self.result,
            "error": self.error,
        }


class ControlSurface:
    """Applies operator commands to an agent runtime.

    Example:
        surface = ControlSurface(runtime)
        result = surface.handle("pull off")
        print(result.message)
    """

    def __init__(self, runtime: "AgentRuntime"):
        self._runtime = runtime

    def handle(self, line: str) -> CommandResult:
        """Parse and execute one command line."""
        try:
            command = Command.parse(line)
        except UnknownCommandError as e:
            logger.warning("%s", e)
            return CommandResult(success=False, message=HELP_TEXT, error=str(e))

        handler = getattr(self, f"_cmd_{command.type.value}")
        result = handler(command)
        logger.debug("Command %r -> %s", line, "ok" if result.success else result.error)
        return result

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _cmd_help(self, command: Command) -> CommandResult:
        return CommandResult(success=True, message=HELP_TEXT)

    def _cmd_pause(self, command: Command) -> CommandResult:
        self._runtime.pause()
        return CommandResult(success=True, message="Paused")

    def _cmd_resume(self, command: Command) -> CommandResult:
        self._runtime.resume()
        return CommandResult(success=True, message="Resumed")

    def _cmd_save(self, command: Command) -> CommandResult:
        if self._runtime.save_settings():
            return CommandResult(success=True, message="Settings saved")
        return CommandResult(success=False, message="Settings not saved", error="save failed")

    def _cmd_camp(self, command: Command) -> CommandResult:
        camp = self._runtime.settings.camp
        action = command.args[0] if command.args else ""
        if action == "set":
            here = self._runtime.env.position()
            camp.anchor = Location(x=here.x, y=here.y, z=here.z)
            camp.enabled = True
            return CommandResult(
                success=True,
                message=f"Camp set at {here.x:.1f}, {here.y:.1f}, {here.z:.1f}",
                result=camp.anchor.model_dump(),
            )
        if action == "clear":
            camp.anchor = None
            camp.enabled = False
            return CommandResult(success=True, message="Camp cleared")
        return self._usage("camp set|clear")

    def _switch(self, command: Command) -> bool | None:
        if not command.args:
            return None
        return _SWITCHES.get(command.args[0])

    def _cmd_pull(self, command: Command) -> CommandResult:
        value = self._switch(command)
        if value is None:
            return self._usage("pull on|off")
        self._runtime.settings.pull.enabled = value
        return CommandResult(success=True, message=f"Pulling {'on' if value else 'off'}")

    def _cmd_rotation(self, command: Command) -> CommandResult:
        value = self._switch(command)
        if value is None:
            return self._usage("rotation on|off")
        settings = self._runtime.settings.rotation
        if value and not settings.enabled:
            self._runtime.rotation.reset()
        settings.enabled = value
        return CommandResult(success=True, message=f"Rotation {'on' if value else 'off'}")

    def _cmd_capture(self, command: Command) -> CommandResult:
        value = self._switch(command)
        if value is None:
            return self._usage("capture on|off")
        self._runtime.settings.capture.enabled = value
        return CommandResult(success=True, message=f"Capture {'on' if value else 'off'}")

    def _cmd_support(self, command: Command) -> CommandResult:
        value = self._switch(command)
        if value is None:
            return self._usage("support on|off")
        self._runtime.settings.support.enabled = value
        return CommandResult(success=True, message=f"Support {'on' if value else 'off'}")

    def _cmd_status(self, command: Command) -> CommandResult:
        status: dict[str, Any] = self._runtime.status()
        message = (
            f"{status['agent_id']}: {status['status_text'] or 'ok'} "
            f"(pull={status['pull_state']}, capture={status['capture_state']})"
        )
        return CommandResult(success=True, message=message, result=status)

    def _usage(self, usage: str) -> CommandResult:
        return CommandResult(success=False, message=f"Usage: {usage}", error="bad arguments")
