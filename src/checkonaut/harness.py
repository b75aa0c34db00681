"""Test harness for check scripts.

Each ``*_test.lua`` file is loaded into its own sandbox. Every global
function whose name starts with ``Test`` is called with no arguments, in the
order the file defines them. A test passes when it returns nothing; it fails
when it raises (``assert``, ``error``, time limit) or returns a value.

The test file reaches the check under test in one of two ways:

* ``explicit`` (default): the test file calls ``require("<check>")`` itself.
* ``implicit``: ``foo.lua`` is loaded next to ``foo_test.lua`` in a private
  environment and only its entrypoint is bound as a global before the test
  file runs. A ``require`` in the test file still replaces that binding.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from lupa.lua54 import lua_type

from checkonaut.config import BindingMode, CheckonautConfig
from checkonaut.errors import BridgeError, ScriptError, ScriptLoadError
from checkonaut.lua.host_api import HostApi, create_default_host_api
from checkonaut.lua.script import ScriptInstance
from checkonaut.results import ErrorKind, ExecutionError, ResultAggregator, TestOutcome

logger = logging.getLogger(__name__)


class TestHarness:
    """Discovers and runs the test functions of test scripts."""

    __test__ = False

    def __init__(self, config: CheckonautConfig, host_api: HostApi | None = None):
        self.config = config
        self.host_api = host_api or create_default_host_api(config.engine.resolved_read_root())

    def run(self, test_files: list[Path], aggregator: ResultAggregator | None = None) -> ResultAggregator:
        """Run every test file.

        Args:
            test_files: Test script paths
            aggregator: Optional existing sink to append to

        Returns:
            The aggregator holding test outcomes and execution errors
        """
        aggregator = aggregator or ResultAggregator()
        items = list(enumerate(test_files))
        logger.info(f"Running {len(items)} test file(s) with {self.config.engine.binding.value} binding")

        def run_one(item: tuple[int, Path]) -> None:
            index, path = item
            try:
                self.run_file(index, path, aggregator)
            except Exception as e:
                logger.error(f"Test file {path} failed with internal error: {e}")
                aggregator.add_error(ExecutionError(
                    kind=ErrorKind.RUNTIME,
                    file=path,
                    message=f"Test execution failed: {e}",
                    order=(index, -1),
                ))

        workers = self.config.engine.effective_workers()
        if workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=workers) as ex:
                list(ex.map(run_one, items))
        else:
            for item in items:
                run_one(item)

        logger.info(f"Tests completed: {aggregator.tests_passed} passed, {aggregator.tests_failed} failed")
        return aggregator

    def sibling_check(self, test_path: Path) -> Path:
        """``dir/foo_test.lua`` -> ``dir/foo.lua``."""
        suffix_len = len(self.config.engine.test_suffix)
        return test_path.with_name(test_path.name[:-suffix_len] + ".lua")

    def run_file(self, index: int, path: Path, aggregator: ResultAggregator) -> None:
        """Load one test file and run its test functions."""
        engine_config = self.config.engine
        script = ScriptInstance(path, self.host_api, engine_config.timeout_seconds)

        try:
            if engine_config.binding is BindingMode.IMPLICIT:
                self._bind_sibling(script)
            with script.recording_definitions() as defined:
                script.load()
        except ScriptLoadError as e:
            logger.error(f"Failed to load test file {path}: {e.message}")
            aggregator.add_error(ExecutionError(
                kind=ErrorKind.LOAD,
                file=script.path,
                message=e.message,
                order=(index, -1),
            ))
            return

        names = self.discover_tests(script, defined)
        if not names:
            logger.debug(f"No test functions in {path}")
        for position, name in enumerate(names):
            aggregator.add_outcome(self._run_test(script, name, order=(index, position)))

    def discover_tests(self, script: ScriptInstance, defined: list) -> list[str]:
        """Test functions in definition order.

        Functions the recorder did not see (e.g. set with ``rawset``) follow
        in alphabetical order.
        """
        prefix = self.config.engine.test_prefix
        names = [name for name in defined if isinstance(name, str) and name.startswith(prefix)]
        seen = set(names)
        extra = sorted(
            key for key in script.sandbox.globals().keys()
            if isinstance(key, str) and key.startswith(prefix) and key not in seen
        )
        return [name for name in names + extra if script.has_function(name)]

    def _bind_sibling(self, script: ScriptInstance) -> None:
        entrypoint = self.config.engine.entrypoint
        check_path = self.sibling_check(script.path)
        if not check_path.is_file():
            logger.debug(f"No sibling check for {script.path}; relying on explicit require")
            return
        env = script.load_isolated(check_path)
        if not script.has_function(entrypoint, env):
            raise ScriptLoadError(check_path, f"'{check_path}' does not define a '{entrypoint}' function")
        script.set_global(entrypoint, env[entrypoint])
        logger.debug(f"Bound '{entrypoint}' from {check_path}")

    def _run_test(self, script: ScriptInstance, name: str, order: tuple) -> TestOutcome:
        try:
            returned = script.call(name)
        except ScriptError as e:
            logger.debug(f"{script.path.name}/{name} failed: {e.message}")
            return TestOutcome(script.path, name, passed=False, message=e.message, order=order)

        if returned is None:
            return TestOutcome(script.path, name, passed=True, order=order)
        return TestOutcome(
            script.path, name, passed=False,
            message=f"returned {_render(script, returned)}", order=order,
        )


def _render(script: ScriptInstance, value) -> str:
    try:
        return json.dumps(script.bridge.from_guest(value))
    except (BridgeError, UnicodeDecodeError):
        return f"a {lua_type(value) or type(value).__name__}"
