"""Discovery of check, test and data files."""

import fnmatch
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from checkonaut.models.document import DataFormat

logger = logging.getLogger(__name__)

LUA_SUFFIX = ".lua"


class FileKind(str, Enum):
    """File type derived purely from a file name."""
    CHECK = "check"
    TEST = "test"
    DATA = "data"


def file_kind(path: Path, test_suffix: str = "_test.lua") -> FileKind | None:
    """Classify a file by its name.

    The test suffix wins over the plain ``.lua`` suffix, so ``foo_test.lua``
    is always a test file. Whether a ``.lua`` file is a check or a library
    is only known after loading it (see ``checkonaut.engine.classify``).
    """
    name = path.name.lower()
    if name.endswith(test_suffix.lower()):
        return FileKind.TEST
    if name.endswith(LUA_SUFFIX):
        return FileKind.CHECK
    if DataFormat.from_path(path) is not None:
        return FileKind.DATA
    return None


@dataclass
class SearchResult:
    """Files found by a FileSearcher, each list sorted by path."""
    check_files: list[Path] = field(default_factory=list)
    test_files: list[Path] = field(default_factory=list)
    data_files: list[Path] = field(default_factory=list)

    def add(self, kind: FileKind, path: Path) -> None:
        if kind is FileKind.CHECK:
            self.check_files.append(path)
        elif kind is FileKind.TEST:
            self.test_files.append(path)
        else:
            self.data_files.append(path)

    def sort(self) -> None:
        for files in (self.check_files, self.test_files, self.data_files):
            files[:] = sorted(set(files))


class FileSearcher:
    """Walks files and directories collecting the files checkonaut runs on."""

    def __init__(self, include_dotfiles: bool = False, include_dotdirs: bool = False,
                 follow_links: bool = False, exclude: list[str] | None = None,
                 test_suffix: str = "_test.lua"):
        """Initialize the searcher.

        Args:
            include_dotfiles: Include files whose name starts with a period
            include_dotdirs: Descend into directories whose name starts with a period
            follow_links: Follow symbolic links to directories
            exclude: Glob patterns matched against paths relative to each search root
            test_suffix: File name suffix marking test files
        """
        self.include_dotfiles = include_dotfiles
        self.include_dotdirs = include_dotdirs
        self.follow_links = follow_links
        self.exclude = exclude or []
        self.test_suffix = test_suffix

    def search(self, paths: Iterable[Path]) -> SearchResult:
        """Search all given paths.

        Args:
            paths: Files or directories; files are classified directly

        Returns:
            SearchResult with absolute, de-duplicated, sorted paths

        Raises:
            FileNotFoundError: If a given path does not exist
        """
        result = SearchResult()
        for path in paths:
            path = Path(path).resolve()
            if not path.exists():
                raise FileNotFoundError(f"Path not found: {path}")

            if path.is_file():
                kind = file_kind(path, self.test_suffix)
                if kind is not None:
                    result.add(kind, path)
                continue

            for file_path in self._walk(path):
                kind = file_kind(file_path, self.test_suffix)
                if kind is not None:
                    result.add(kind, file_path)

        result.sort()
        logger.debug(
            f"Discovered {len(result.check_files)} check, {len(result.test_files)} test "
            f"and {len(result.data_files)} data files"
        )
        return result

    def _walk(self, root: Path) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(root, followlinks=self.follow_links):
            if not self.include_dotdirs:
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for filename in filenames:
                if not self.include_dotfiles and filename.startswith("."):
                    continue
                file_path = Path(dirpath) / filename
                if self._is_excluded(file_path, root):
                    continue
                yield file_path

    def _is_excluded(self, file_path: Path, root: Path) -> bool:
        relative = file_path.relative_to(root).as_posix()
        return any(fnmatch.fnmatch(relative, pattern) for pattern in self.exclude)
