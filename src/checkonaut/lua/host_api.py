"""Host functions exposed to Lua scripts.

The host API is an explicit registration table. Nothing outside it is
reachable from a script: a function only becomes callable from Lua once it
is registered here. Handlers receive and return value model data; a handler
signals a guest-visible failure by raising ``HostCallError``, which the Lua
side re-raises as a plain ``error()`` with the handler's message.
"""

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path

from checkonaut.errors import BridgeError, HostCallError
from checkonaut.models.value import Value, to_value, value_type_name

logger = logging.getLogger(__name__)

MODULE_NAME = "@checkonaut"
GLOBAL_NAME = "checkonaut"

HostFunction = Callable[..., Value]


class HostApi:
    """Registry of host functions injected into every script environment."""

    def __init__(self):
        self._functions: dict[str, HostFunction] = {}

    def register(self, name: str, handler: HostFunction) -> None:
        """Register a host function under a Lua-visible name.

        Raises:
            ValueError: If the name is not a valid identifier or already taken
        """
        if not name.isidentifier():
            raise ValueError(f"invalid host function name: {name!r}")
        if name in self._functions:
            raise ValueError(f"host function already registered: {name}")
        self._functions[name] = handler

    def names(self) -> list[str]:
        return sorted(self._functions)

    def install(self, sandbox) -> None:
        """Expose all registered functions inside a sandbox.

        Functions are reachable three ways: ``require("@checkonaut")``, the
        global table ``checkonaut``, and as plain globals.
        """
        module = sandbox.runtime.table()
        for name, handler in sorted(self._functions.items()):
            module[name] = sandbox.helpers.wrap_host(_adapt(handler, sandbox.bridge))
        sandbox.register_module(MODULE_NAME, module)

        lua_globals = sandbox.runtime.globals()
        lua_globals[GLOBAL_NAME] = module
        for name in self._functions:
            lua_globals[name] = module[name]


def _adapt(handler: HostFunction, bridge) -> Callable:
    """Wrap a handler into the (ok, result_or_message) protocol the Lua shim expects."""
    def call(*args):
        try:
            result = handler(*[bridge.from_guest(arg) for arg in args])
            return True, bridge.to_guest(result)
        except (HostCallError, BridgeError) as e:
            return False, str(e)
        except Exception as e:
            logger.debug(f"Host function {getattr(handler, '__name__', handler)} raised {type(e).__name__}: {e}")
            return False, f"{type(e).__name__}: {e}"
    return call


def read_json_handler(root: Path) -> HostFunction:
    """Create a ReadJSON handler resolving paths against ``root``."""
    root = root.resolve()

    def read_json(path: Value = None) -> Value:
        if not isinstance(path, str):
            raise HostCallError(f"ReadJSON expects a string path, got {value_type_name(path)}")
        try:
            full_path = (root / path).resolve()
        except (OSError, ValueError) as e:
            raise HostCallError(f"invalid ReadJSON path {path!r}: {e}")
        if not full_path.is_relative_to(root):
            raise HostCallError(f"ReadJSON path '{path}' escapes the read root '{root}'")
        try:
            with open(full_path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise HostCallError(f"failed to read '{full_path}': {e.strerror or e}")
        except json.JSONDecodeError as e:
            raise HostCallError(f"failed to parse JSON in '{full_path}': {e}")
        except UnicodeDecodeError as e:
            raise HostCallError(f"failed to read '{full_path}': not valid UTF-8 ({e.reason})")
        logger.debug(f"ReadJSON loaded {full_path}")
        return to_value(data)

    return read_json


def matches(text: Value = None, pattern: Value = None) -> Value:
    """Report whether a regular expression matches anywhere in a string."""
    if not isinstance(text, str) or not isinstance(pattern, str):
        raise HostCallError(
            f"Matches expects (string, string), got ({value_type_name(text)}, {value_type_name(pattern)})"
        )
    try:
        return re.search(pattern, text) is not None
    except re.error as e:
        raise HostCallError(f"invalid regex pattern '{pattern}': {e}")


def create_default_host_api(read_root: Path) -> HostApi:
    """Host API with the standard ReadJSON and Matches functions."""
    api = HostApi()
    api.register("ReadJSON", read_json_handler(read_root))
    api.register("Matches", matches)
    return api
