"""Sandboxed Lua runtimes.

Each script file gets its own ``LuaRuntime``. Runtimes are never shared
between threads. The sandbox removes every standard library entry that
reaches the filesystem, processes or the host interpreter, and restricts
``require`` to Lua files next to the script being run.
"""

import logging
from pathlib import Path

from lupa.lua54 import LuaRuntime

from checkonaut.lua.bridge import LuaBridge

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "execution time limit exceeded"

# Instructions between two deadline checks of the time guard
HOOK_INSTRUCTION_STEP = 10_000

_HELPERS = """
local load, setmetatable, rawset, error, type, pairs, ipairs = load, setmetatable, rawset, error, type, pairs, ipairs
local getmt, setmt = debug.getmetatable, debug.setmetatable
local sethook, clock = debug.sethook, os.clock
local open = io.open
local create, resume = coroutine.create, coroutine.resume
local pack, unpack, concat, gsub = table.pack, table.unpack, table.concat, string.gsub
local package, os, coroutine = package, os, coroutine
local helpers = {}

-- deadline hook of the current guarded call, nil while disarmed
local active_hook, active_step

function helpers.load(source, chunkname, env)
  if env ~= nil then
    return load(source, chunkname, "t", env)
  end
  return load(source, chunkname, "t")
end

function helpers.isolated_env(parent)
  return setmetatable({}, {__index = parent})
end

function helpers.record_new_globals(g)
  local order = {}
  local previous = getmt(g)
  local recorder = {}
  if previous ~= nil then
    for key, value in pairs(previous) do
      recorder[key] = value
    end
  end
  local forward = previous and previous.__newindex
  recorder.__newindex = function(t, k, v)
    order[#order + 1] = k
    if type(forward) == "function" then
      forward(t, k, v)
    elseif forward ~= nil then
      forward[k] = v
    else
      rawset(t, k, v)
    end
  end
  setmt(g, recorder)
  return order, function()
    -- a script that installed its own metatable keeps it
    if getmt(g) == recorder then
      setmt(g, previous)
    end
  end
end

function helpers.wrap_host(fn)
  return function(...)
    local ok, result = fn(...)
    if not ok then
      error(result, 2)
    end
    return result
  end
end

function helpers.arm(seconds, step)
  local deadline = clock() + seconds
  active_hook = function()
    if clock() > deadline then
      error("%(timeout)s", 0)
    end
  end
  active_step = step
  sethook(active_hook, "", step)
end

function helpers.disarm()
  active_hook = nil
  sethook()
end

-- count hooks are per coroutine; carry the deadline into every resume
local function rehook(co)
  if active_hook ~= nil then
    sethook(co, active_hook, "", active_step)
  else
    sethook(co)
  end
end

local function guarded_resume(co, ...)
  if type(co) == "thread" then
    rehook(co)
  end
  return resume(co, ...)
end

local function guarded_wrap(fn)
  local co = create(fn)
  return function(...)
    rehook(co)
    local results = pack(resume(co, ...))
    if not results[1] then
      error(results[2], 0)
    end
    return unpack(results, 2, results.n)
  end
end

local function script_searcher(dir)
  return function(name)
    local base = dir .. "/" .. gsub(name, "%%.", "/")
    local missing = {}
    for _, file in ipairs({base .. ".lua", base .. "/init.lua"}) do
      local f = open(file, "r")
      local source = f and f:read("a")
      if f then
        f:close()
      end
      if source ~= nil then
        local chunk, err = load(source, "@" .. file, "t")
        if chunk == nil then
          error("error loading module '" .. name .. "' from file '" .. file .. "':\\n\\t" .. err, 0)
        end
        return chunk, file
      end
      missing[#missing + 1] = "\\n\\tno file '" .. file .. "'"
    end
    return concat(missing)
  end
end

function helpers.lockdown(g, script_dir)
  g.python = nil
  g.io = nil
  g.debug = nil
  g.dofile = nil
  g.loadfile = nil
  package.loadlib = nil
  package.searchpath = nil
  package.cpath = ""
  package.path = script_dir .. "/?.lua;" .. script_dir .. "/?/init.lua"
  -- package.path is informational only; lookups never leave script_dir
  package.searchers = {package.searchers[1], script_searcher(script_dir)}
  g.os = {clock = os.clock, date = os.date, difftime = os.difftime, time = os.time}
  coroutine.resume = guarded_resume
  coroutine.wrap = guarded_wrap
  package.loaded.io = nil
  package.loaded.debug = nil
  package.loaded.python = nil
  package.loaded.os = g.os
  -- text chunks only, no precompiled bytecode
  g.load = function(chunk, chunkname, mode, ...)
    return load(chunk, chunkname, "t", ...)
  end
end

function helpers.register_module(name, module)
  package.loaded[name] = module
end

return helpers
""" % {"timeout": TIMEOUT_MESSAGE}


class LuaSandbox:
    """A locked-down Lua runtime plus the helpers needed to drive it."""

    def __init__(self, script_dir: Path):
        self.script_dir = script_dir
        self.runtime = LuaRuntime(
            unpack_returned_tuples=True,
            register_eval=False,
            register_builtins=False,
            overflow_handler=float,
        )
        self.helpers = self.runtime.execute(_HELPERS)
        self.bridge = LuaBridge(self.runtime)
        self.helpers.lockdown(self.runtime.globals(), script_dir.as_posix())
        logger.debug(f"Created Lua sandbox for {script_dir}")

    def globals(self):
        return self.runtime.globals()

    def register_module(self, name: str, module) -> None:
        """Make ``require(name)`` return ``module`` without touching the filesystem."""
        self.helpers.register_module(name, module)

    def compile(self, source: str, chunkname: str, env=None):
        """Compile a text chunk; returns ``(function, None)`` or ``(None, message)``."""
        if env is None:
            result = self.helpers.load(source, chunkname)
        else:
            result = self.helpers.load(source, chunkname, env)
        if isinstance(result, tuple):
            return result[0], (result[1] if len(result) > 1 else None)
        return result, None

    def arm_time_limit(self, seconds: float | None) -> None:
        if seconds is not None:
            self.helpers.arm(seconds, HOOK_INSTRUCTION_STEP)

    def disarm_time_limit(self) -> None:
        self.helpers.disarm()
