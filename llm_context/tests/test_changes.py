"""Tests for file-level change detection."""

import os

import pytest

from llm_context.changes import ChangeReport, detect_changes, hash_files
from llm_context.errors import AnalysisIOError
from llm_context.hashing import compute_file_hash
from llm_context.manifest import FileEntry, Manifest


def _manifest_for(root, paths):
    files = {
        path: FileEntry(hash=compute_file_hash(root / path), size=0, last_modified="")
        for path in paths
    }
    return Manifest(granularity="file", files=files)


class TestDetectChanges:
    """Tests for the three-way comparison."""

    def test_nothing_changed(self, sample_project, default_config):
        """A tree matching the manifest has only unchanged files."""
        manifest = _manifest_for(sample_project, ["app/service.py", "app/store.py", "web/client.js"])

        report = detect_changes(sample_project, manifest, default_config)

        assert not report.has_changes
        assert report.unchanged == ["app/service.py", "app/store.py", "web/client.js"]
        assert report.percent_skipped == 100.0

    def test_added_modified_deleted(self, sample_project, default_config):
        """New, edited and removed files are classified."""
        manifest = _manifest_for(sample_project, ["app/service.py", "app/store.py", "web/client.js"])
        manifest.files["app/gone.py"] = FileEntry(hash="x", size=0, last_modified="")

        (sample_project / "app" / "store.py").write_text("def save_order(order):\n    return order\n")
        (sample_project / "app" / "new.py").write_text("def fresh():\n    pass\n")

        report = detect_changes(sample_project, manifest, default_config)

        assert report.added == ["app/new.py"]
        assert report.modified == ["app/store.py"]
        assert report.deleted == ["app/gone.py"]
        assert report.unchanged == ["app/service.py", "web/client.js"]
        assert report.changed == ["app/new.py", "app/store.py"]

    def test_mtime_alone_is_not_a_change(self, sample_project, default_config):
        """Touching a file without changing its bytes is not a modification."""
        manifest = _manifest_for(sample_project, ["app/service.py", "app/store.py", "web/client.js"])
        os.utime(sample_project / "app" / "store.py", (0, 0))

        report = detect_changes(sample_project, manifest, default_config)

        assert report.modified == []

    def test_whitespace_edit_is_a_change(self, sample_project, default_config):
        """File hashes are byte-exact."""
        manifest = _manifest_for(sample_project, ["app/service.py", "app/store.py", "web/client.js"])
        store = sample_project / "app" / "store.py"
        store.write_text(store.read_text() + "\n")

        report = detect_changes(sample_project, manifest, default_config)

        assert report.modified == ["app/store.py"]

    def test_current_hashes_reported(self, sample_project, default_config):
        """The report carries the hash of every current file."""
        manifest = _manifest_for(sample_project, [])

        report = detect_changes(sample_project, manifest, default_config)

        assert report.hashes["app/store.py"] == compute_file_hash(sample_project / "app" / "store.py")
        assert len(report.added) == 3


class TestChangeReport:
    """Tests for report summaries."""

    def test_summary(self):
        """Summary counts each category and the skipped share."""
        report = ChangeReport(added=["a"], modified=["b"], deleted=["c"], unchanged=["d", "e"])

        assert report.summary() == {
            "added": 1,
            "modified": 1,
            "deleted": 1,
            "unchanged": 2,
            "percentSkipped": 50.0,
        }

    def test_empty_tree_skips_everything(self):
        """With no files there is nothing to re-analyze."""
        assert ChangeReport().percent_skipped == 100.0


class TestHashFiles:
    """Tests for hash_files."""

    def test_vanished_file_left_out(self, tmp_path):
        """Files deleted between discovery and hashing are skipped."""
        (tmp_path / "a.py").write_text("x = 1\n")

        hashes = hash_files(tmp_path, ["a.py", "gone.py"], "sha256")

        assert list(hashes) == ["a.py"]

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unreadable_file_is_fatal(self, tmp_path):
        """A file that exists but cannot be read aborts the run."""
        locked = tmp_path / "locked.py"
        locked.write_text("x = 1\n")
        locked.chmod(0)

        try:
            with pytest.raises(AnalysisIOError):
                hash_files(tmp_path, ["locked.py"], "sha256")
        finally:
            locked.chmod(0o644)
