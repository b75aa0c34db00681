"""Unit tests for the Lua sandbox."""

import pytest
from lupa.lua54 import LuaError

from checkonaut.lua.sandbox import TIMEOUT_MESSAGE, LuaSandbox


@pytest.fixture
def sandbox(tmp_path):
    return LuaSandbox(tmp_path)


class TestLuaSandbox:
    """Test the locked-down standard library."""

    @pytest.mark.parametrize("name", ["io", "debug", "dofile", "loadfile", "python"])
    def test_dangerous_globals_removed(self, sandbox, name):
        assert sandbox.runtime.execute(f"return {name}") is None

    def test_os_restricted_to_time_functions(self, sandbox):
        assert sandbox.runtime.execute("return os.execute") is None
        assert sandbox.runtime.execute("return os.remove") is None
        assert sandbox.runtime.execute("return type(os.time)") == "function"
        assert sandbox.runtime.execute("return require('os') == os") is True

    def test_string_and_table_libraries_available(self, sandbox):
        assert sandbox.runtime.execute("return string.upper('a') .. table.concat({'b', 'c'})") == "ABC"

    def test_binary_chunks_rejected(self, sandbox):
        result = sandbox.runtime.execute("return load(string.dump(function() return 1 end))")
        assert result[0] is None
        assert "binary" in result[1]

    def test_text_chunks_allowed(self, sandbox):
        assert sandbox.runtime.execute("return load('return 1 + 1')()") == 2

    def test_require_resolves_next_to_script(self, sandbox, tmp_path):
        (tmp_path / "helper.lua").write_text("return {answer = 42}")
        assert sandbox.runtime.execute("return require('helper').answer") == 42

    def test_native_modules_unavailable(self, sandbox):
        assert sandbox.runtime.execute("return package.cpath") == ""
        assert sandbox.runtime.execute("return package.loadlib") is None

    def test_compile_reports_syntax_errors(self, sandbox):
        function, error = sandbox.compile("function (", "@broken.lua")
        assert function is None
        assert "broken.lua" in error

    def test_compile_with_environment(self, sandbox):
        env = sandbox.helpers.isolated_env(sandbox.globals())
        function, error = sandbox.compile("value = 1", "=chunk", env)
        assert error is None
        function()
        assert env["value"] == 1
        assert sandbox.globals()["value"] is None


class TestTimeGuard:
    """Test the execution time limit."""

    def test_endless_loop_interrupted(self, sandbox):
        sandbox.arm_time_limit(0.1)
        try:
            with pytest.raises(LuaError, match=TIMEOUT_MESSAGE):
                sandbox.runtime.execute("while true do end")
        finally:
            sandbox.disarm_time_limit()

    def test_disarmed_guard_does_not_fire(self, sandbox):
        sandbox.arm_time_limit(0.1)
        sandbox.disarm_time_limit()
        assert sandbox.runtime.execute("local n = 0 for i = 1, 100000 do n = n + i end return n") == 5000050000

    def test_no_limit_is_noop(self, sandbox):
        sandbox.arm_time_limit(None)
        assert sandbox.runtime.execute("return 1") == 1

    def test_coroutine_loop_interrupted(self, sandbox):
        sandbox.arm_time_limit(0.1)
        try:
            with pytest.raises(LuaError, match=TIMEOUT_MESSAGE):
                sandbox.runtime.execute("coroutine.wrap(function() while true do end end)()")
        finally:
            sandbox.disarm_time_limit()

    def test_coroutine_created_before_arming_is_guarded(self, sandbox):
        sandbox.runtime.execute("Spinner = coroutine.create(function() while true do end end)")
        sandbox.arm_time_limit(0.1)
        try:
            ok, message = sandbox.runtime.execute("return coroutine.resume(Spinner)")
        finally:
            sandbox.disarm_time_limit()
        assert ok is False
        assert TIMEOUT_MESSAGE in message


class TestRequire:
    """Test that require never leaves the script directory."""

    @pytest.fixture
    def outside(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.lua").write_text("return 'outside module loaded'")
        script_dir = tmp_path / "scripts"
        script_dir.mkdir()
        return outside, script_dir

    def test_reassigned_package_path_is_ignored(self, outside):
        outside_dir, script_dir = outside
        sandbox = LuaSandbox(script_dir)
        ok, _ = sandbox.runtime.execute(
            f"package.path = '{outside_dir.as_posix()}/?.lua'\nreturn pcall(require, 'secret')"
        )
        assert ok is False

    def test_parent_directory_names_stay_inside(self, outside):
        _, script_dir = outside
        sandbox = LuaSandbox(script_dir)
        ok, message = sandbox.runtime.execute("return pcall(require, '..outside.secret')")
        assert ok is False
        assert "no file" in message

    def test_packages_in_subdirectories(self, tmp_path):
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "init.lua").write_text("return {name = 'lib'}")
        (tmp_path / "lib" / "util.lua").write_text("return {name = 'util'}")
        sandbox = LuaSandbox(tmp_path)
        assert sandbox.runtime.execute("return require('lib').name .. require('lib.util').name") == "libutil"

    def test_bytecode_modules_rejected(self, tmp_path):
        (tmp_path / "compiled.lua").write_bytes(b"\x1bLua\x54\x00compiled")
        sandbox = LuaSandbox(tmp_path)
        ok, message = sandbox.runtime.execute("return pcall(require, 'compiled')")
        assert ok is False
        assert "binary" in message

    def test_searchpath_unavailable(self, sandbox):
        assert sandbox.runtime.execute("return package.searchpath") is None
