"""Embedded Lua runtime: value bridge, sandbox, host API and loaded scripts."""

from checkonaut.lua.bridge import LuaBridge, is_truthy
from checkonaut.lua.host_api import HostApi, create_default_host_api
from checkonaut.lua.sandbox import LuaSandbox
from checkonaut.lua.script import ScriptInstance

__all__ = [
    "LuaBridge",
    "is_truthy",
    "HostApi",
    "create_default_host_api",
    "LuaSandbox",
    "ScriptInstance",
]
