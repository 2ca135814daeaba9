"""Tests for exclusion module."""

import pytest

from src.vault.config import DEFAULT_EXCLUDE_PATTERNS
from src.vault.exclusion import ExclusionMatcher, normalize_path


class TestExclusionMatcher:
    """Tests for ExclusionMatcher class."""

    @pytest.fixture
    def matcher(self):
        return ExclusionMatcher(DEFAULT_EXCLUDE_PATTERNS)

    def test_literal_directory_and_children(self, matcher):
        assert matcher.should_exclude(".git")
        assert matcher.should_exclude(".git/config")
        assert matcher.should_exclude("node_modules/pkg/index.js")

    def test_literal_in_middle_segment(self, matcher):
        assert matcher.should_exclude("packages/app/node_modules/pkg/index.js")

    def test_literal_does_not_match_prefix_of_name(self, matcher):
        assert not matcher.should_exclude(".gitignore")
        assert not matcher.should_exclude("my.git")

    def test_extension_glob_any_depth(self, matcher):
        assert matcher.should_exclude("app.log")
        assert matcher.should_exclude("logs/deep/app.log")
        assert not matcher.should_exclude("app.log.txt")
        assert not matcher.should_exclude("catalog")

    def test_editor_files(self, matcher):
        assert matcher.should_exclude("notes.txt.swp")
        assert matcher.should_exclude("src/~lockfile")
        assert not matcher.should_exclude("src/a~b")

    def test_build_directories(self, matcher):
        assert matcher.should_exclude("build")
        assert matcher.should_exclude("web/build/out.js")
        assert matcher.should_exclude("src/__pycache__/mod.cpython-312.pyc")
        assert not matcher.should_exclude("rebuild.py")

    def test_vault_is_excluded(self, matcher):
        assert matcher.should_exclude(".agent_shield/index.json")

    def test_regular_files_kept(self, matcher):
        assert not matcher.should_exclude("src/main.py")
        assert not matcher.should_exclude("README.md")

    def test_backslash_paths(self, matcher):
        assert matcher.should_exclude("node_modules\\pkg\\index.js")
        assert normalize_path("a\\b\\c.txt") == "a/b/c.txt"

    def test_custom_patterns(self):
        matcher = ExclusionMatcher(["*.secret", "vendor"])
        assert matcher.should_exclude("keys/api.secret")
        assert matcher.should_exclude("vendor/lib.py")
        assert not matcher.should_exclude("src/vendored.py")

    def test_empty_patterns_ignored(self):
        matcher = ExclusionMatcher(["", "tmp"])
        assert len(matcher) == 1
        assert not matcher.should_exclude("file.txt")

    def test_contains(self, matcher):
        assert "app.log" in matcher
        assert "main.py" not in matcher
