"""Custom exceptions for Muster."""


class MusterError(Exception):
    """Base exception for all Muster errors."""

    pass


# =============================================================================
# Shared Document Exceptions
# =============================================================================


class DocumentError(MusterError):
    """Base exception for shared document persistence errors."""

    def __init__(self, name: str, message: str, original_error: Exception | None = None):
        self.name = name
        self.original_error = original_error
        super().__init__(f"Document '{name}': {message}")


class DocumentReadError(DocumentError):
    """Raised when a shared document cannot be read or parsed."""

    def __init__(self, name: str, original_error: Exception | None = None):
        reason = str(original_error) if original_error else "unreadable"
        super().__init__(name, f"read failed ({reason})", original_error)


class DocumentWriteError(DocumentError):
    """Raised when a shared document cannot be persisted."""

    def __init__(self, name: str, original_error: Exception | None = None):
        reason = str(original_error) if original_error else "unwritable"
        super().__init__(name, f"write failed ({reason})", original_error)


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(MusterError):
    """Raised when agent settings are invalid."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        detail = "; ".join(self.errors[:5])
        if len(self.errors) > 5:
            detail += f" ... and {len(self.errors) - 5} more"
        super().__init__(f"{message}: {detail}" if detail else message)


# =============================================================================
# Control Surface Exceptions
# =============================================================================


class UnknownCommandError(MusterError):
    """Raised when the control surface receives a command it does not know."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Unknown command '{command}'")
