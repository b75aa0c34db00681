"""Check results, test outcomes and their aggregation.

A ``Check`` function may answer in several shapes, nested arbitrarily:

* ``nil``                          - no issues
* ``"text"``                       - one error
* ``{a, b, ...}``                  - each element normalized, in order
* ``{message = m, severity = s}``  - one issue; ``s == "warning"`` selects a
  warning, anything else an error. ``m`` must itself resolve to exactly one
  message.

``parse_check_result`` turns the Lua value into a ``CheckResult`` variant and
``flatten`` produces the final list of issues. Anything else is a contract
violation, reported as an execution error rather than an issue.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from lupa.lua54 import lua_type

from checkonaut.errors import ContractViolation

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity of an issue found by a check."""
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Issue:
    """A problem a check found in the data."""
    message: str
    severity: Severity = Severity.ERROR

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.message}"


class CheckResult:
    """Base of the return value variants a Check function may produce."""

    def flatten(self) -> list[Issue]:
        raise NotImplementedError


@dataclass(frozen=True)
class NoIssues(CheckResult):
    def flatten(self) -> list[Issue]:
        return []


@dataclass(frozen=True)
class Message(CheckResult):
    text: str

    def flatten(self) -> list[Issue]:
        return [Issue(self.text)]


@dataclass(frozen=True)
class IssueList(CheckResult):
    items: tuple[CheckResult, ...]

    def flatten(self) -> list[Issue]:
        issues: list[Issue] = []
        for item in self.items:
            issues.extend(item.flatten())
        return issues


@dataclass(frozen=True)
class Detailed(CheckResult):
    message: CheckResult
    severity: Severity

    def flatten(self) -> list[Issue]:
        texts = self.message.flatten()
        if len(texts) != 1:
            raise ContractViolation(
                None,
                f"'message' must resolve to exactly one message, got {len(texts)}",
            )
        return [Issue(texts[0].message, self.severity)]


def parse_check_result(value: Any, _depth: int = 0) -> CheckResult:
    """Interpret a value returned by a Check function.

    Args:
        value: The raw Lua value (as handed back by lupa)

    Returns:
        The matching CheckResult variant

    Raises:
        ContractViolation: If the value (or anything nested in it) has no
            recognised shape
    """
    if _depth > 100:
        raise ContractViolation(None, "result nested too deeply (cyclic table?)")
    if value is None:
        return NoIssues()
    if isinstance(value, bytes):
        return Message(value.decode("utf-8", errors="replace"))
    if isinstance(value, str):
        return Message(value)

    kind = lua_type(value)
    if kind != "table":
        raise ContractViolation(None, f"expected nil, string or table, got {_describe(value)}")

    message = value["message"]
    if message is not None:
        severity = Severity.WARNING if value["severity"] == "warning" else Severity.ERROR
        return Detailed(parse_check_result(message, _depth + 1), severity)

    keys = list(value.keys())
    if not all(isinstance(k, int) and not isinstance(k, bool) and k >= 1 for k in keys):
        raise ContractViolation(None, "table result is neither a sequence nor has a 'message' field")
    return IssueList(tuple(parse_check_result(value[k], _depth + 1) for k in sorted(keys)))


def _describe(value: Any) -> str:
    kind = lua_type(value)
    if kind is not None:
        return kind
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


class ErrorKind(str, Enum):
    """Kinds of execution errors (failures that are not issues)."""
    LOAD = "load"
    CONTRACT = "contract"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    DOCUMENT = "document"


@dataclass(frozen=True)
class IssueRecord:
    """An issue attributed to the document, check and object that produced it."""
    document: Path
    check: Path
    object_index: int
    issue: Issue
    order: tuple = field(default=(), compare=False, repr=False)


@dataclass(frozen=True)
class TestOutcome:
    """The outcome of one test function."""
    file: Path
    test_name: str
    passed: bool
    message: str | None = None
    order: tuple = field(default=(), compare=False, repr=False)

    __test__ = False  # not a pytest test class

    def __str__(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        suffix = f": {self.message}" if self.message else ""
        return f"[{status}] {self.file.name}/{self.test_name}{suffix}"


@dataclass(frozen=True)
class ExecutionError:
    """A failure to run a unit of work, attributed to its originating file."""
    kind: ErrorKind
    file: Path
    message: str
    document: Path | None = None
    object_index: int | None = None
    test_name: str | None = None
    order: tuple = field(default=(), compare=False, repr=False)

    def __str__(self) -> str:
        location = str(self.file)
        if self.test_name:
            location += f"/{self.test_name}"
        if self.document is not None:
            location += f" on {self.document}"
            if self.object_index is not None:
                location += f" (object {self.object_index})"
        return f"[{self.kind.value.upper()}] {location}: {self.message}"


class ResultAggregator:
    """Thread-safe, append-only collection of everything a run produced.

    Workers may append in any order; every view is sorted by the order key
    each record carries, so reports are identical between runs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._issues: list[IssueRecord] = []
        self._outcomes: list[TestOutcome] = []
        self._errors: list[ExecutionError] = []

    def add_issues(self, records: list[IssueRecord]) -> None:
        with self._lock:
            self._issues.extend(records)

    def add_outcome(self, outcome: TestOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def add_error(self, error: ExecutionError) -> None:
        logger.debug(f"Execution error: {error}")
        with self._lock:
            self._errors.append(error)

    @property
    def issues(self) -> list[IssueRecord]:
        with self._lock:
            return sorted(self._issues, key=lambda r: r.order)

    @property
    def outcomes(self) -> list[TestOutcome]:
        with self._lock:
            return sorted(self._outcomes, key=lambda r: r.order)

    @property
    def errors(self) -> list[ExecutionError]:
        with self._lock:
            return sorted(self._errors, key=lambda r: r.order)

    def count_by_severity(self) -> dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for record in self.issues:
            counts[record.issue.severity.value] += 1
        return counts

    @property
    def has_errors(self) -> bool:
        """Whether any Error-severity issue was found."""
        return any(r.issue.severity is Severity.ERROR for r in self.issues)

    @property
    def tests_passed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.passed)

    @property
    def tests_failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.passed)

    @property
    def succeeded(self) -> bool:
        """No error issues, no failing tests and no execution errors."""
        return not self.has_errors and self.tests_failed == 0 and not self.errors

    @property
    def exit_code(self) -> int:
        """Exit code for CI: 0 = pass (warnings allowed), 1 = fail."""
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "status": "pass" if self.succeeded else "fail",
            "exit_code": self.exit_code,
            "counters": {
                "issues": self.count_by_severity(),
                "tests_passed": self.tests_passed,
                "tests_failed": self.tests_failed,
                "execution_errors": len(self.errors),
            },
            "issues": [
                {
                    "document": str(record.document),
                    "check": str(record.check),
                    "object": record.object_index,
                    "severity": record.issue.severity.value,
                    "message": record.issue.message,
                }
                for record in self.issues
            ],
            "tests": [
                {
                    "file": str(outcome.file),
                    "test": outcome.test_name,
                    "passed": outcome.passed,
                    "message": outcome.message,
                }
                for outcome in self.outcomes
            ],
            "errors": [
                {
                    "kind": error.kind.value,
                    "file": str(error.file),
                    "document": str(error.document) if error.document else None,
                    "object": error.object_index,
                    "test": error.test_name,
                    "message": error.message,
                }
                for error in self.errors
            ],
        }
