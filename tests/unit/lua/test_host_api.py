"""Unit tests for host functions exposed to scripts."""

import json
from pathlib import Path

import pytest

from checkonaut.errors import HostCallError
from checkonaut.lua.host_api import (
    GLOBAL_NAME,
    MODULE_NAME,
    HostApi,
    create_default_host_api,
    matches,
    read_json_handler,
)
from checkonaut.lua.sandbox import LuaSandbox


@pytest.fixture
def read_root(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (root / "allowed.json").write_text(json.dumps({"teams": ["a", "b"], "owner": None}))
    (root / "broken.json").write_text("{nope")
    (tmp_path / "outside.json").write_text("{}")
    return root


@pytest.fixture
def sandbox(tmp_path, read_root):
    sandbox = LuaSandbox(tmp_path)
    create_default_host_api(read_root).install(sandbox)
    return sandbox


class TestHostApiInstall:
    """Test how host functions are reached from Lua."""

    def test_reachable_through_require(self, sandbox):
        lua = f"return require('{MODULE_NAME}').ReadJSON('allowed.json').teams[2]"
        assert sandbox.runtime.execute(lua) == "b"

    def test_reachable_through_global_table_and_plain_globals(self, sandbox):
        assert sandbox.runtime.execute(f"return {GLOBAL_NAME}.Matches('abc', 'b')") is True
        assert sandbox.runtime.execute("return Matches('abc', '^z')") is False

    def test_registered_names(self):
        assert create_default_host_api(Path(".")).names() == ["Matches", "ReadJSON"]

    def test_custom_function(self, tmp_path):
        api = HostApi()
        api.register("Double", lambda x: x * 2)
        sandbox = LuaSandbox(tmp_path)
        api.install(sandbox)
        assert sandbox.runtime.execute("return Double(21)") == 42

    def test_unexpected_handler_exception_is_guest_visible_error(self, tmp_path):
        api = HostApi()
        api.register("Lookup", lambda key: {"a": 1}[key])
        sandbox = LuaSandbox(tmp_path)
        api.install(sandbox)
        ok, message = sandbox.runtime.execute("return pcall(Lookup, 'b')")
        assert ok is False
        assert "KeyError" in message
        assert sandbox.runtime.execute("return Lookup('a')") == 1

    def test_register_rejects_duplicates_and_bad_names(self):
        api = HostApi()
        api.register("One", lambda: 1)
        with pytest.raises(ValueError, match="already registered"):
            api.register("One", lambda: 1)
        with pytest.raises(ValueError, match="invalid"):
            api.register("not valid", lambda: 1)


class TestReadJSON:
    """Test the ReadJSON host function."""

    def test_reads_relative_to_root(self, read_root):
        read_json = read_json_handler(read_root)
        assert read_json("allowed.json") == {"teams": ["a", "b"], "owner": None}

    def test_missing_file_is_guest_visible_error(self, sandbox):
        ok, message = sandbox.runtime.execute("return pcall(ReadJSON, 'missing.json')")
        assert ok is False
        assert "failed to read" in message
        assert "missing.json" in message

    def test_invalid_json_is_guest_visible_error(self, sandbox):
        ok, message = sandbox.runtime.execute("return pcall(ReadJSON, 'broken.json')")
        assert ok is False
        assert "failed to parse JSON" in message

    def test_escaping_the_root_is_rejected(self, sandbox):
        ok, message = sandbox.runtime.execute("return pcall(ReadJSON, '../outside.json')")
        assert ok is False
        assert "escapes the read root" in message

    def test_embedded_null_byte_is_guest_visible_error(self, sandbox):
        ok, message = sandbox.runtime.execute("return pcall(ReadJSON, 'a\\0b.json')")
        assert ok is False
        assert "invalid ReadJSON path" in message

    def test_non_string_path_rejected(self, read_root):
        with pytest.raises(HostCallError, match="expects a string path"):
            read_json_handler(read_root)(5)


class TestMatches:
    """Test the Matches host function."""

    def test_search_semantics(self):
        assert matches("valid-name", r"^[a-z0-9-]+$") is True
        assert matches("Invalid_Name", r"^[a-z0-9-]+$") is False
        assert matches("prefix-value", "value") is True

    def test_invalid_pattern(self):
        with pytest.raises(HostCallError, match="invalid regex"):
            matches("a", "(")

    def test_wrong_argument_types(self):
        with pytest.raises(HostCallError, match="expects"):
            matches(1, "a")

    def test_error_raised_in_lua(self, sandbox):
        ok, message = sandbox.runtime.execute("return pcall(Matches, 'a', '(')")
        assert ok is False
        assert "invalid regex" in message
