"""Check execution engine.

Runs every check script against every object of every document. Each check
file is loaded into its own sandboxed runtime, once, in its own worker; the
objects are then checked sequentially within that runtime so a script may
keep state across objects. Failures are captured per (document, check,
object) and never stop the remaining work.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from checkonaut.config import CheckonautConfig
from checkonaut.errors import (
    ContractViolation,
    DocumentError,
    ScriptError,
    ScriptLoadError,
    ScriptRuntimeError,
    ScriptTimeout,
)
from checkonaut.lua.host_api import HostApi, create_default_host_api
from checkonaut.lua.script import ScriptInstance
from checkonaut.models.document import Document, load_document
from checkonaut.models.value import Value
from checkonaut.results import (
    ErrorKind,
    ExecutionError,
    IssueRecord,
    ResultAggregator,
    parse_check_result,
)

logger = logging.getLogger(__name__)


class ScriptKind(str, Enum):
    """What a Lua file is, decided once it has been loaded."""
    LIBRARY = "library"
    CHECK = "check"
    TEST = "test"


def is_test_file(path: Path, test_suffix: str = "_test.lua") -> bool:
    return path.name.lower().endswith(test_suffix.lower())


def classify(path: Path, has_entrypoint: bool, test_suffix: str = "_test.lua") -> ScriptKind:
    """Classify a loaded script file.

    The test suffix takes precedence: a test file is never a check, even if
    it defines the entrypoint function.
    """
    if is_test_file(path, test_suffix):
        return ScriptKind.TEST
    return ScriptKind.CHECK if has_entrypoint else ScriptKind.LIBRARY


@dataclass(frozen=True)
class InvocationContext:
    """Second argument handed to a Check function."""
    document: Path
    check: Path

    def to_value(self) -> Value:
        return {"document": str(self.document), "check": str(self.check)}


def error_kind_for(error: ScriptError) -> ErrorKind:
    if isinstance(error, ScriptLoadError):
        return ErrorKind.LOAD
    if isinstance(error, ScriptTimeout):
        return ErrorKind.TIMEOUT
    if isinstance(error, ContractViolation):
        return ErrorKind.CONTRACT
    return ErrorKind.RUNTIME


def load_documents(paths: list[Path], aggregator: ResultAggregator) -> list[Document]:
    """Load data files, recording unreadable ones as DOCUMENT errors.

    Args:
        paths: Data file paths, in the order documents should be reported
        aggregator: Sink for load failures

    Returns:
        Successfully loaded documents, in input order
    """
    documents = []
    for index, path in enumerate(paths):
        try:
            documents.append(load_document(path))
        except DocumentError as e:
            logger.error(f"Failed to load data file {e.path}: {e.message}")
            aggregator.add_error(ExecutionError(
                kind=ErrorKind.DOCUMENT,
                file=e.path,
                message=e.message,
                order=(-2, index),
            ))
    return documents


class CheckEngine:
    """Runs check scripts against documents."""

    def __init__(self, config: CheckonautConfig, host_api: HostApi | None = None):
        self.config = config
        self.host_api = host_api or create_default_host_api(config.engine.resolved_read_root())

    def run(self, check_files: list[Path], documents: list[Document],
            aggregator: ResultAggregator | None = None) -> ResultAggregator:
        """Run all checks against all documents.

        Args:
            check_files: Candidate check script paths (libraries are skipped,
                test files are ignored)
            documents: Loaded documents
            aggregator: Optional existing sink to append to

        Returns:
            The aggregator holding issues and execution errors
        """
        aggregator = aggregator or ResultAggregator()
        engine_config = self.config.engine
        candidates = [
            (index, path) for index, path in enumerate(check_files)
            if not is_test_file(path, engine_config.test_suffix)
        ]

        logger.info(f"Running {len(candidates)} check file(s) against {len(documents)} document(s)")

        def run_one(item: tuple[int, Path]) -> None:
            index, path = item
            try:
                self._run_check_file(index, path, documents, aggregator)
            except Exception as e:
                logger.error(f"Check {path} failed with internal error: {e}")
                aggregator.add_error(ExecutionError(
                    kind=ErrorKind.RUNTIME,
                    file=path,
                    message=f"Check execution failed: {e}",
                    order=(-1, index),
                ))

        workers = engine_config.effective_workers()
        if workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=workers) as ex:
                list(ex.map(run_one, candidates))
        else:
            for item in candidates:
                run_one(item)

        counts = aggregator.count_by_severity()
        logger.info(
            f"Checks completed with {counts['error']} error(s) and {counts['warning']} warning(s)"
        )
        return aggregator

    def load_check(self, path: Path) -> tuple[ScriptInstance, ScriptKind]:
        """Load a script file and classify it.

        Raises:
            ScriptLoadError: If the script cannot be loaded
        """
        engine_config = self.config.engine
        script = ScriptInstance(path, self.host_api, engine_config.timeout_seconds)
        script.load()
        kind = classify(script.path, script.has_function(engine_config.entrypoint), engine_config.test_suffix)
        return script, kind

    def check_object(self, script: ScriptInstance, document: Document, obj: Value) -> list:
        """Invoke the entrypoint for one object and normalize its result.

        Returns:
            The issues found

        Raises:
            ScriptError: For runtime errors, timeouts and contract violations
        """
        bridge = script.bridge
        context = InvocationContext(document=document.path, check=script.path)
        returned = script.call(
            self.config.engine.entrypoint,
            bridge.to_guest(obj),
            bridge.to_guest(context.to_value()),
        )
        try:
            return parse_check_result(returned).flatten()
        except ContractViolation as e:
            raise ContractViolation(script.path, f"invalid return value: {e.message}") from e
        except Exception as e:
            # reading a returned table can still fail, e.g. on non-UTF-8 strings
            raise ScriptRuntimeError(script.path, f"invalid return value: {e}") from e

    def _run_check_file(self, check_index: int, path: Path, documents: list[Document],
                        aggregator: ResultAggregator) -> None:
        try:
            script, kind = self.load_check(path)
        except ScriptLoadError as e:
            logger.error(f"Failed to load check {path}: {e.message}")
            aggregator.add_error(ExecutionError(
                kind=ErrorKind.LOAD,
                file=path,
                message=e.message,
                order=(-1, check_index),
            ))
            return

        if kind is not ScriptKind.CHECK:
            logger.debug(f"Skipping {path}: no '{self.config.engine.entrypoint}' function (library)")
            return

        logger.debug(f"Running check {path}")
        for doc_index, document in enumerate(documents):
            for obj_index, obj in enumerate(document.objects):
                order = (doc_index, check_index, obj_index)
                try:
                    issues = self.check_object(script, document, obj)
                except ScriptError as e:
                    logger.warning(f"Check {path} failed on {document.path}: {e.message}")
                    aggregator.add_error(ExecutionError(
                        kind=error_kind_for(e),
                        file=script.path,
                        message=e.message,
                        document=document.path,
                        object_index=obj_index,
                        order=order,
                    ))
                    continue

                aggregator.add_issues([
                    IssueRecord(
                        document=document.path,
                        check=script.path,
                        object_index=obj_index,
                        issue=issue,
                        order=order + (n,),
                    )
                    for n, issue in enumerate(issues)
                ])
