"""Exception hierarchy for checkonaut.

Every failure that can happen while running user scripts maps onto one of
these types. The engine and the test harness catch them at the smallest
unit boundary (one object checked by one script, or one test function) and
turn them into execution error records, so none of them ever aborts a run.
"""

from pathlib import Path


class CheckonautError(Exception):
    """Base class for all checkonaut errors."""


class ValueModelError(CheckonautError):
    """A parsed value cannot be represented in the value model."""


class DocumentError(CheckonautError):
    """A data file could not be read or parsed."""

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class BridgeError(CheckonautError):
    """A Lua value cannot be converted into the value model."""


class HostCallError(CheckonautError):
    """A host API function failed; surfaced to Lua as a guest error."""


class ScriptError(CheckonautError):
    """Base class for failures attributed to a single script file."""

    def __init__(self, path: Path | None, message: str):
        self.path = path
        self.message = message
        super().__init__(message)


class ScriptLoadError(ScriptError):
    """A script failed to read, compile or run its top-level code."""


class ScriptRuntimeError(ScriptError):
    """A Lua error was raised while calling into a loaded script."""


class ScriptTimeout(ScriptRuntimeError):
    """A script call exceeded the configured execution time limit."""


class ContractViolation(ScriptError):
    """A Check function returned a value outside the result contract."""
