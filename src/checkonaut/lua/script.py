"""Loaded script files.

A ``ScriptInstance`` owns one sandbox for one script file. The file is
loaded once and its functions are then called any number of times, so
state a script keeps outside its functions (counters, caches) lives for as
long as the instance does and is never visible to another script file.
"""

import logging
from contextlib import contextmanager
from pathlib import Path

from lupa.lua54 import LuaError, lua_type

from checkonaut.errors import ScriptLoadError, ScriptRuntimeError, ScriptTimeout
from checkonaut.lua.host_api import HostApi
from checkonaut.lua.sandbox import TIMEOUT_MESSAGE, LuaSandbox

logger = logging.getLogger(__name__)


class ScriptInstance:
    """One script file loaded into its own sandboxed runtime."""

    def __init__(self, path: Path, host_api: HostApi, time_limit: float | None = None):
        """Create the sandbox; the script itself is not run until ``load()``.

        Args:
            path: Script file path
            host_api: Host functions to expose inside the sandbox
            time_limit: Seconds any single load or call may run, None to disable
        """
        self.path = path.resolve()
        self.time_limit = time_limit
        self.sandbox = LuaSandbox(self.path.parent)
        self.bridge = self.sandbox.bridge
        host_api.install(self.sandbox)

    def load(self) -> None:
        """Compile and run the script's top-level code in the global environment.

        Raises:
            ScriptLoadError: On read, syntax, runtime or timeout errors
        """
        self._execute_file(self.path)
        logger.debug(f"Loaded script {self.path}")

    def load_isolated(self, path: Path):
        """Run another script file in a private environment.

        Globals the file defines land in the returned environment table
        instead of this instance's globals; reads fall through to them.

        Raises:
            ScriptLoadError: On read, syntax, runtime or timeout errors
        """
        env = self.sandbox.helpers.isolated_env(self.sandbox.globals())
        self._execute_file(path.resolve(), env)
        return env

    def has_function(self, name: str, env=None) -> bool:
        """Whether a global (or ``env``) entry with this name is a Lua function."""
        scope = self.sandbox.globals() if env is None else env
        return lua_type(scope[name]) == "function"

    def get_global(self, name: str):
        return self.sandbox.globals()[name]

    def set_global(self, name: str, value) -> None:
        self.sandbox.globals()[name] = value

    def call(self, name: str, *args):
        """Call a global function by name; see ``call_function``."""
        function = self.sandbox.globals()[name]
        if lua_type(function) not in ("function", "table", "userdata"):
            raise ScriptRuntimeError(self.path, f"global '{name}' is not a function")
        return self.call_function(function, *args)

    def call_function(self, function, *args):
        """Call a Lua function under the time guard.

        Returns:
            The first value the function returned (None when it returned nothing)

        Raises:
            ScriptTimeout: If the call exceeded the time limit
            ScriptRuntimeError: If the call raised a Lua error or its result could
                not be converted
        """
        try:
            result = self._guarded(function, *args)
        except LuaError as e:
            message = _error_message(e)
            if TIMEOUT_MESSAGE in message:
                raise ScriptTimeout(self.path, f"{TIMEOUT_MESSAGE} ({self.time_limit}s)") from e
            raise ScriptRuntimeError(self.path, message) from e
        except Exception as e:
            # e.g. UnicodeDecodeError converting a non-UTF-8 Lua string
            raise ScriptRuntimeError(self.path, _failure_message(e)) from e
        if isinstance(result, tuple):
            return result[0] if result else None
        return result

    @contextmanager
    def recording_definitions(self):
        """Record the names of new globals, in the order they are defined.

        Yields a list that is filled in when the block exits.
        """
        lua_globals = self.sandbox.globals()
        order, stop_recording = self.sandbox.helpers.record_new_globals(lua_globals)
        names: list[str] = []
        try:
            yield names
        finally:
            stop_recording()
            names.extend(order[i] for i in range(1, len(order) + 1))

    def _execute_file(self, path: Path, env=None) -> None:
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ScriptLoadError(path, f"failed to read Lua source from '{path}': {e}") from e

        try:
            chunk, error = self.sandbox.compile(source, f"@{path}", env)
        except UnicodeDecodeError as e:
            raise ScriptLoadError(path, f"failed to load Lua source from '{path}': {_failure_message(e)}") from e
        if chunk is None:
            raise ScriptLoadError(path, f"failed to load Lua source from '{path}': {error}")

        try:
            self._guarded(chunk)
        except LuaError as e:
            raise ScriptLoadError(path, f"failed to load Lua source from '{path}': {_error_message(e)}") from e
        except Exception as e:
            raise ScriptLoadError(path, f"failed to load Lua source from '{path}': {_failure_message(e)}") from e

    def _guarded(self, function, *args):
        self.sandbox.arm_time_limit(self.time_limit)
        try:
            return function(*args)
        finally:
            self.sandbox.disarm_time_limit()


def _error_message(error: LuaError) -> str:
    message = error.args[0] if error.args else ""
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    if not isinstance(message, str) or not message.strip():
        return "(error object is not a string)"
    return message


def _failure_message(error: Exception) -> str:
    if isinstance(error, UnicodeDecodeError):
        return f"Lua string is not valid UTF-8: {error.object[:40]!r}"
    return f"{type(error).__name__}: {error}"
