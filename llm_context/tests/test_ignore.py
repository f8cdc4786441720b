"""Tests for ignore rules and source discovery."""

import os

import pytest

from llm_context.config import LlmContextConfig
from llm_context.ignore import (
    IgnoreMatcher,
    build_matcher,
    iter_source_files,
    parse_gitignore,
    pattern_to_regex,
)


class TestPatternToRegex:
    """Tests for gitignore pattern translation."""

    def test_star_does_not_cross_directories(self):
        """A single star stays inside one path segment."""
        matcher = IgnoreMatcher(["src/*.js"])

        assert matcher.is_ignored("src/app.js")
        assert not matcher.is_ignored("src/lib/app.js")

    def test_double_star_spans_directories(self):
        """``**/`` matches any number of directories, including none."""
        matcher = IgnoreMatcher(["docs/**/tmp"])

        assert matcher.is_ignored("docs/tmp", is_dir=True)
        assert matcher.is_ignored("docs/a/b/tmp", is_dir=True)
        assert not matcher.is_ignored("other/tmp", is_dir=True)

    def test_question_mark_matches_one_char(self):
        """``?`` matches exactly one non-slash character."""
        matcher = IgnoreMatcher(["file?.py"])

        assert matcher.is_ignored("file1.py")
        assert not matcher.is_ignored("file10.py")

    def test_regex_characters_are_literal(self):
        """Dots and plus signs in patterns are not regex operators."""
        matcher = IgnoreMatcher(["a+b.py"])

        assert matcher.is_ignored("a+b.py")
        assert not matcher.is_ignored("aab.py")
        assert not matcher.is_ignored("a+bxpy")

    def test_anchored_regex(self):
        """A leading slash anchors at the start of the path."""
        assert pattern_to_regex("/build").startswith("^build")

    def test_inner_slash_anchors(self):
        """A pattern with a slash in the middle only matches from the root."""
        matcher = IgnoreMatcher(["docs/tmp"])

        assert matcher.is_ignored("docs/tmp", is_dir=True)
        assert matcher.is_ignored("docs/tmp/notes.py")
        assert not matcher.is_ignored("src/docs/tmp", is_dir=True)

    def test_leading_double_star_matches_anywhere(self):
        matcher = IgnoreMatcher(["**/fixtures"])

        assert matcher.is_ignored("fixtures", is_dir=True)
        assert matcher.is_ignored("a/b/fixtures", is_dir=True)


class TestIgnoreMatcher:
    """Tests for rule evaluation."""

    def test_default_rules(self):
        """Dependency, VCS and output folders are ignored by default."""
        matcher = parse_gitignore()

        assert matcher.is_ignored("node_modules", is_dir=True)
        assert matcher.is_ignored("packages/web/node_modules", is_dir=True)
        assert matcher.is_ignored(".git", is_dir=True)
        assert matcher.is_ignored(".llm-context", is_dir=True)
        assert not matcher.is_ignored("src/build_tools.py")

    def test_unanchored_name_matches_any_depth(self):
        """A bare name matches a segment anywhere in the path."""
        matcher = IgnoreMatcher(["generated"])

        assert matcher.is_ignored("generated/api.py")
        assert matcher.is_ignored("src/generated/api.py")

    def test_anchored_rule_only_matches_root(self):
        """``/gen`` ignores the top-level folder only."""
        matcher = IgnoreMatcher(["/gen"])

        assert matcher.is_ignored("gen", is_dir=True)
        assert not matcher.is_ignored("src/gen", is_dir=True)

    def test_directory_only_rule(self):
        """A trailing slash only matches directories."""
        matcher = IgnoreMatcher(["logs/"])

        assert matcher.is_ignored("logs", is_dir=True)
        assert not matcher.is_ignored("logs")

    def test_negation_last_rule_wins(self):
        """``!pattern`` re-includes a path ignored by an earlier rule."""
        matcher = IgnoreMatcher(["*.gen.js", "!keep.gen.js"])

        assert matcher.is_ignored("api.gen.js")
        assert not matcher.is_ignored("keep.gen.js")

    def test_windows_separators(self):
        """Backslash separators are normalized."""
        matcher = IgnoreMatcher(["generated"])

        assert matcher.is_ignored("src\\generated\\api.py")

    def test_gitignore_comments_and_blanks(self, tmp_path):
        """Comments and blank lines in .gitignore are skipped."""
        gitignore = tmp_path / ".gitignore"
        gitignore.write_text("# build output\n\nscratch/\n*.tmp.py\n")

        matcher = parse_gitignore(gitignore)

        assert matcher.is_ignored("scratch", is_dir=True)
        assert matcher.is_ignored("notes.tmp.py")
        assert not matcher.is_ignored("# build output")


class TestIterSourceFiles:
    """Tests for tree discovery."""

    def test_finds_tracked_extensions(self, sample_project, default_config):
        """Only tracked extensions outside ignored folders are returned, sorted."""
        (sample_project / "README.md").write_text("# readme\n")

        files = iter_source_files(sample_project, default_config)

        assert files == ["app/service.py", "app/store.py", "web/client.js"]

    def test_respects_gitignore(self, sample_project, default_config):
        """Paths listed in .gitignore are skipped."""
        (sample_project / ".gitignore").write_text("web/\n")

        files = iter_source_files(sample_project, default_config)

        assert "web/client.js" not in files
        assert "app/service.py" in files

    def test_gitignore_can_be_disabled(self, sample_project, default_config):
        """use_gitignore: false ignores the .gitignore file."""
        (sample_project / ".gitignore").write_text("web/\n")
        default_config.patterns.use_gitignore = False

        files = iter_source_files(sample_project, default_config)

        assert "web/client.js" in files

    def test_exclude_patterns(self, sample_project, default_config):
        """Configured exclude globs are applied."""
        default_config.patterns.exclude = ["store.py"]

        files = iter_source_files(sample_project, default_config)

        assert "app/store.py" not in files

    def test_skips_large_files(self, sample_project, default_config):
        """Files above max_file_size are skipped."""
        (sample_project / "app" / "big.py").write_text("x = 1\n" * 100)
        default_config.patterns.max_file_size = 100

        files = iter_source_files(sample_project, default_config)

        assert "app/big.py" not in files

    def test_output_directory_is_ignored(self, sample_project):
        """A custom output directory is never scanned."""
        config = LlmContextConfig()
        config.output.directory = "context-out"
        (sample_project / "context-out").mkdir()
        (sample_project / "context-out" / "generated.py").write_text("x = 1\n")

        files = iter_source_files(sample_project, config, build_matcher(sample_project, config))

        assert "context-out/generated.py" not in files

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_symlinks_skipped_by_default(self, sample_project, default_config, tmp_path_factory):
        """Symlinked directories are not followed unless configured."""
        external = tmp_path_factory.mktemp("external")
        (external / "shared.py").write_text("x = 1\n")
        (sample_project / "linked").symlink_to(external, target_is_directory=True)

        assert "linked/shared.py" not in iter_source_files(sample_project, default_config)

        default_config.patterns.follow_symlinks = True
        assert "linked/shared.py" in iter_source_files(sample_project, default_config)

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_symlink_loop_terminates(self, tmp_path, default_config):
        """A symlink pointing at an ancestor does not loop forever."""
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "mod.py").write_text("x = 1\n")
        (tmp_path / "pkg" / "loop").symlink_to(tmp_path, target_is_directory=True)
        default_config.patterns.follow_symlinks = True

        files = iter_source_files(tmp_path, default_config)

        assert "pkg/mod.py" in files
