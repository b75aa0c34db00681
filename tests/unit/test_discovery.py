"""Unit tests for check, test and data file discovery."""

import os
from pathlib import Path

import pytest

from checkonaut.discovery import FileKind, FileSearcher, file_kind


def _touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


class TestFileKind:
    """Test classification by file name."""

    def test_test_suffix_wins_over_lua(self):
        assert file_kind(Path("namespace_test.lua")) == FileKind.TEST
        assert file_kind(Path("NAMESPACE_TEST.LUA")) == FileKind.TEST

    def test_plain_lua_is_check(self):
        assert file_kind(Path("namespace.lua")) == FileKind.CHECK

    @pytest.mark.parametrize("name", ["a.json", "a.yaml", "a.yml", "a.toml", "A.JSON"])
    def test_data_files(self, name):
        assert file_kind(Path(name)) == FileKind.DATA

    def test_other_files_ignored(self):
        assert file_kind(Path("README.md")) is None

    def test_custom_test_suffix(self):
        assert file_kind(Path("foo.spec.lua"), test_suffix=".spec.lua") == FileKind.TEST
        assert file_kind(Path("foo_test.lua"), test_suffix=".spec.lua") == FileKind.CHECK


class TestFileSearcher:
    """Test walking directories for checkonaut files."""

    def test_search_classifies_and_sorts(self, tmp_path):
        _touch(tmp_path / "b.lua")
        _touch(tmp_path / "a.lua")
        _touch(tmp_path / "a_test.lua")
        _touch(tmp_path / "data" / "z.yaml")
        _touch(tmp_path / "data" / "y.json")
        _touch(tmp_path / "notes.txt")

        result = FileSearcher().search([tmp_path])
        assert [p.name for p in result.check_files] == ["a.lua", "b.lua"]
        assert [p.name for p in result.test_files] == ["a_test.lua"]
        assert [p.name for p in result.data_files] == ["y.json", "z.yaml"]
        assert all(p.is_absolute() for p in result.check_files)

    def test_dotfiles_skipped_by_default(self, tmp_path):
        _touch(tmp_path / ".hidden.json")
        _touch(tmp_path / "shown.json")

        assert [p.name for p in FileSearcher().search([tmp_path]).data_files] == ["shown.json"]
        included = FileSearcher(include_dotfiles=True).search([tmp_path])
        assert [p.name for p in included.data_files] == [".hidden.json", "shown.json"]

    def test_dot_directories_pruned(self, tmp_path):
        _touch(tmp_path / ".git" / "config.json")
        _touch(tmp_path / "keep.json")

        assert [p.name for p in FileSearcher().search([tmp_path]).data_files] == ["keep.json"]
        included = FileSearcher(include_dotdirs=True).search([tmp_path])
        assert len(included.data_files) == 2

    def test_exclude_patterns(self, tmp_path):
        _touch(tmp_path / "vendor" / "lib.json")
        _touch(tmp_path / "app.json")

        result = FileSearcher(exclude=["vendor/*"]).search([tmp_path])
        assert [p.name for p in result.data_files] == ["app.json"]

    def test_explicit_file_and_overlap_deduplicated(self, tmp_path):
        data_file = _touch(tmp_path / "one.json")

        result = FileSearcher().search([tmp_path, data_file])
        assert result.data_files == [data_file.resolve()]

    def test_missing_path_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileSearcher().search([tmp_path / "missing"])

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_follow_links(self, tmp_path):
        target = tmp_path / "target"
        _touch(target / "linked.json")
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(target, target_is_directory=True)

        assert FileSearcher().search([root]).data_files == []
        followed = FileSearcher(follow_links=True).search([root])
        assert [p.name for p in followed.data_files] == ["linked.json"]
