"""Conversion between the value model and Lua values.

Maps become plain Lua tables and sequences become 1-indexed Lua tables.
Lua has no separate array type and cannot store ``nil`` in a table, so
every sequence created here is recorded in a weak-keyed registry together
with its length. That keeps ``[]`` distinct from ``{}`` and keeps trailing
or embedded ``null`` elements when a value travels back to Python.
"""

from lupa.lua54 import LuaRuntime, lua_type

from checkonaut.errors import BridgeError
from checkonaut.models.value import Value

MAX_DEPTH = 200


def is_truthy(guest_value) -> bool:
    """Lua truthiness: only nil and false are falsy."""
    return guest_value is not None and guest_value is not False


class LuaBridge:
    """Two-way value conversion bound to one Lua runtime."""

    def __init__(self, runtime: LuaRuntime):
        self.runtime = runtime
        self._sequence_lengths = runtime.execute("return setmetatable({}, {__mode = 'k'})")

    def to_guest(self, value: Value):
        """Convert a Value into its Lua representation.

        Scalars pass through unchanged (lupa maps them natively). Containers
        are rebuilt as fresh tables, so a script mutating its input never
        affects the host's copy.
        """
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, dict):
            table = self.runtime.table()
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeError(f"value model map keys must be strings, got {type(key).__name__}")
                table[key] = self.to_guest(item)
            return table
        if isinstance(value, list):
            table = self.runtime.table()
            for index, item in enumerate(value, start=1):
                if item is not None:
                    table[index] = self.to_guest(item)
            self._sequence_lengths[table] = len(value)
            return table
        raise TypeError(f"not a value model type: {type(value).__name__}")

    def from_guest(self, guest_value) -> Value:
        """Convert a Lua value back into the value model.

        Raises:
            BridgeError: For functions, userdata, threads, unsupported map
                keys, or tables nested deeper than MAX_DEPTH (e.g. cycles)
        """
        return self._from_guest(guest_value, 0)

    def is_sequence(self, table) -> bool:
        """Whether a Lua table reads back as a sequence."""
        keys = list(table.keys())
        registered = self._sequence_lengths[table]
        if not keys:
            return registered is not None
        if not all(_is_int_key(key) for key in keys):
            return False
        if registered is not None:
            return True
        return sorted(keys) == list(range(1, len(keys) + 1))

    def _from_guest(self, guest_value, depth: int) -> Value:
        if depth > MAX_DEPTH:
            raise BridgeError(f"value nested deeper than {MAX_DEPTH} levels (cyclic table?)")

        kind = lua_type(guest_value)
        if kind is None:
            if isinstance(guest_value, bytes):
                return guest_value.decode("utf-8", errors="replace")
            if guest_value is None or isinstance(guest_value, (bool, int, float, str)):
                return guest_value
            raise BridgeError(f"cannot convert Python object of type {type(guest_value).__name__}")
        if kind != "table":
            raise BridgeError(f"cannot convert Lua {kind} to a value")

        if self.is_sequence(guest_value):
            length = max(list(guest_value.keys()) + [self._sequence_lengths[guest_value] or 0])
            return [self._from_guest(guest_value[i], depth + 1) for i in range(1, length + 1)]

        result: dict[str, Value] = {}
        for key, item in guest_value.items():
            result[_map_key(key)] = self._from_guest(item, depth + 1)
        return result


def _is_int_key(key) -> bool:
    return isinstance(key, int) and not isinstance(key, bool) and key >= 1


def _map_key(key) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    if isinstance(key, int) and not isinstance(key, bool):
        return str(key)
    raise BridgeError(f"unsupported map key {key!r}: keys must be strings")
