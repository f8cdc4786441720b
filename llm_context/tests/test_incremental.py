"""End-to-end tests for full and incremental analysis runs."""

import json
import os

import pytest

import llm_context.analyzer as analyzer_module
from llm_context.errors import AnalysisIOError
from llm_context.graph_store import read_graph
from llm_context.incremental import (
    MODE_FULL,
    MODE_INCREMENTAL,
    preview_changes,
    run_analysis,
    run_full,
    run_incremental,
)
from llm_context.manifest import load_manifest

from conftest import make_unit_module


def _graph_lines(root, config):
    return config.graph_path(root).read_text().splitlines()


@pytest.fixture
def count_analyzed(monkeypatch):
    """Count how many unit records are computed."""
    calls = []
    original = analyzer_module.analyze_unit

    def counting(unit, *args, **kwargs):
        calls.append(unit.key)
        return original(unit, *args, **kwargs)

    monkeypatch.setattr(analyzer_module, "analyze_unit", counting)
    return calls


class TestFullRun:
    """Tests for run_full and the first run."""

    def test_first_run_is_full(self, sample_project, default_config):
        """Without a manifest the first run analyzes everything."""
        result = run_incremental(sample_project, default_config)

        assert result.mode == MODE_FULL
        assert result.reason == "no prior analysis"
        assert result.written
        assert sorted(result.analyzed) == ["app/service.py", "app/store.py", "web/client.js"]

    def test_one_record_per_unit(self, sample_project, default_config):
        """Every unit of every tracked file has exactly one record."""
        run_full(sample_project, default_config)

        records = read_graph(default_config.graph_path(sample_project))
        ids = [r.id for r in records]
        assert len(ids) == len(set(ids))
        assert sorted(r.name for r in records) == [
            "build_order", "loadOrders", "main", "place_order", "render", "save_order",
        ]

    def test_manifest_written(self, sample_project, default_config):
        """The manifest covers tracked files and records global stats."""
        run_full(sample_project, default_config)

        manifest = load_manifest(default_config.manifest_path(sample_project))
        assert sorted(manifest.files) == ["app/service.py", "app/store.py", "web/client.js"]
        assert manifest.files["app/service.py"].units == [
            "app/service.py#main",
            "app/service.py#build_order",
            "app/service.py#place_order",
        ]
        assert manifest.global_stats["totalFunctions"] == 6
        assert manifest.global_stats["totalFiles"] == 3

    def test_unit_fingerprints_only_in_unit_granularity(self, sample_project, default_config, unit_config):
        """File granularity stores no per-unit fingerprints."""
        run_full(sample_project, default_config)
        manifest = load_manifest(default_config.manifest_path(sample_project))
        assert manifest.files["app/store.py"].unit_fingerprints is None

        run_full(sample_project, unit_config)
        manifest = load_manifest(unit_config.manifest_path(sample_project))
        assert set(manifest.files["app/store.py"].unit_fingerprints) == {"save_order"}

    def test_unsupported_tracked_extension(self, sample_project, default_config):
        """Tracked files without a parser are fingerprinted with no units."""
        default_config.patterns.extensions.append(".go")
        (sample_project / "tool.go").write_text("package main\n")

        result = run_full(sample_project, default_config)

        manifest = load_manifest(default_config.manifest_path(sample_project))
        assert result.unsupported == ["tool.go"]
        assert manifest.files["tool.go"].units == []

    def test_dependency_index_when_tracked(self, sample_project, default_config):
        """dependencies.json is written only when dependency tracking is on."""
        run_full(sample_project, default_config)
        assert not default_config.dependencies_path(sample_project).exists()

        default_config.analysis.track_dependencies = True
        result = run_full(sample_project, default_config)

        index = json.loads(default_config.dependencies_path(sample_project).read_text())
        assert index["dependents"]["save_order"] == ["place_order"]
        assert result.dependency_stats["totalFunctions"] == 6

    def test_parallel_workers_same_graph(self, sample_project, default_config):
        """Worker count does not change the output."""
        run_full(sample_project, default_config)
        serial = _graph_lines(sample_project, default_config)

        default_config.analysis.workers = 4
        run_full(sample_project, default_config)

        assert _graph_lines(sample_project, default_config) == serial


class TestIncrementalRun:
    """Tests for run_incremental."""

    def test_no_changes_writes_nothing(self, sample_project, default_config):
        """A second run without edits leaves every artifact untouched."""
        run_incremental(sample_project, default_config)
        graph_before = default_config.graph_path(sample_project).read_bytes()
        manifest_before = default_config.manifest_path(sample_project).read_bytes()

        result = run_incremental(sample_project, default_config)

        assert result.mode == MODE_INCREMENTAL
        assert not result.written
        assert result.analyzed == []
        assert result.changes.percent_skipped == 100.0
        assert default_config.graph_path(sample_project).read_bytes() == graph_before
        assert default_config.manifest_path(sample_project).read_bytes() == manifest_before

    def test_modified_file_reanalyzed(self, sample_project, default_config):
        """Only changed files are re-analyzed."""
        run_incremental(sample_project, default_config)
        (sample_project / "app" / "store.py").write_text(
            "def save_order(order):\n    print(order)\n\n\ndef load_orders():\n    return []\n"
        )

        result = run_incremental(sample_project, default_config)

        assert result.analyzed == ["app/store.py"]
        records = {r.id: r for r in read_graph(default_config.graph_path(sample_project))}
        assert records["app/store.py#save_order"].effects == ["logging"]
        assert "app/store.py#load_orders" in records
        assert len(records) == 7

    def test_deleted_file_dropped(self, sample_project, default_config):
        """Records and manifest entries of deleted files are removed."""
        run_incremental(sample_project, default_config)
        (sample_project / "web" / "client.js").unlink()

        result = run_incremental(sample_project, default_config)

        assert result.changes.deleted == ["web/client.js"]
        records = read_graph(default_config.graph_path(sample_project))
        assert all(r.file != "web/client.js" for r in records)
        manifest = load_manifest(default_config.manifest_path(sample_project))
        assert "web/client.js" not in manifest.files

    def test_added_file(self, sample_project, unit_config):
        """New files are analyzed in unit granularity too."""
        run_incremental(sample_project, unit_config)
        (sample_project / "app" / "extra.py").write_text("def extra():\n    return 1\n")

        result = run_incremental(sample_project, unit_config)

        assert result.changes.added == ["app/extra.py"]
        assert result.unit_summary["added"] == 1
        ids = [r.id for r in read_graph(unit_config.graph_path(sample_project))]
        assert ids.count("app/extra.py#extra") == 1

    def test_parse_failure_keeps_previous_records(self, sample_project, unit_config):
        """An unparseable file keeps its old records and reports a partial run."""
        run_incremental(sample_project, unit_config)
        old_hash = load_manifest(unit_config.manifest_path(sample_project)).files["app/store.py"].hash
        (sample_project / "app" / "store.py").write_text("def save_order(order:\n")

        result = run_incremental(sample_project, unit_config)

        assert result.partial
        assert list(result.failures) == ["app/store.py"]
        ids = [r.id for r in read_graph(unit_config.graph_path(sample_project))]
        assert "app/store.py#save_order" in ids
        manifest = load_manifest(unit_config.manifest_path(sample_project))
        assert manifest.files["app/store.py"].hash == old_hash

    def test_parse_failure_in_file_granularity(self, sample_project, default_config):
        """File granularity also keeps the records of a file that fails to parse."""
        run_incremental(sample_project, default_config)
        (sample_project / "web" / "client.js").write_text("function broken() {\n")

        result = run_incremental(sample_project, default_config)

        assert result.partial
        ids = [r.id for r in read_graph(default_config.graph_path(sample_project))]
        assert "web/client.js#loadOrders" in ids

    def test_failed_write_keeps_previous_artifacts(self, sample_project, default_config, monkeypatch):
        """If the manifest cannot be replaced, the graph is not replaced either."""
        default_config.analysis.track_dependencies = True
        run_incremental(sample_project, default_config)
        output_dir = default_config.output_dir(sample_project)
        before = {path.name: path.read_bytes() for path in output_dir.iterdir()}
        (sample_project / "app" / "store.py").write_text("def persist(order):\n    pass\n")

        real_replace = os.replace

        def failing_replace(src, dst):
            if str(dst).endswith("manifest.json"):
                raise OSError("disk full")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(AnalysisIOError):
            run_incremental(sample_project, default_config)

        after = {path.name: path.read_bytes() for path in output_dir.iterdir()}
        assert after == before
        ids = [r.id for r in read_graph(default_config.graph_path(sample_project))]
        assert "app/store.py#save_order" in ids

    def test_granularity_change_forces_full(self, sample_project, default_config, unit_config):
        """Switching granularity rebuilds everything."""
        run_incremental(sample_project, default_config)

        result = run_incremental(sample_project, unit_config)

        assert result.mode == MODE_FULL
        assert result.reason == "granularity changed from file to unit"

    def test_malformed_manifest_forces_full(self, sample_project, default_config):
        """A corrupt manifest is treated as no prior analysis."""
        run_incremental(sample_project, default_config)
        default_config.manifest_path(sample_project).write_text("{ broken")

        result = run_incremental(sample_project, default_config)

        assert result.mode == MODE_FULL
        assert result.reason == "no prior analysis"

    def test_missing_graph_forces_full(self, sample_project, default_config):
        """A manifest without its graph cannot be updated incrementally."""
        run_incremental(sample_project, default_config)
        default_config.graph_path(sample_project).unlink()

        result = run_incremental(sample_project, default_config)

        assert result.mode == MODE_FULL
        assert result.reason == "graph missing or malformed"
        assert len(read_graph(default_config.graph_path(sample_project))) == 6

    def test_missing_dependency_index_regenerated(self, sample_project, default_config):
        """A no-change run recreates a missing dependency index."""
        default_config.analysis.track_dependencies = True
        run_incremental(sample_project, default_config)
        default_config.dependencies_path(sample_project).unlink()

        result = run_incremental(sample_project, default_config)

        assert result.written
        assert default_config.dependencies_path(sample_project).exists()


class TestUnitGranularity:
    """Tests for per-unit recomputation on a module with many functions."""

    @pytest.fixture
    def module_project(self, tmp_path):
        (tmp_path / "checks.py").write_text(make_unit_module())
        return tmp_path

    def _edit_validate_email(self, root):
        # Same line count, different body
        source = make_unit_module(special_body="return '@' in value and '.' in value")
        (root / "checks.py").write_text(source)

    def test_only_changed_unit_recomputed(self, module_project, unit_config, count_analyzed):
        """Editing one of 50 functions recomputes one record."""
        run_incremental(module_project, unit_config)
        before = _graph_lines(module_project, unit_config)
        count_analyzed.clear()

        self._edit_validate_email(module_project)
        result = run_incremental(module_project, unit_config)

        after = _graph_lines(module_project, unit_config)
        assert count_analyzed == ["validate_email"]
        assert result.unit_summary["modified"] == 1
        assert result.unit_summary["unchanged"] == 49
        assert len(after) == 50
        assert after[:49] == before[:49]
        assert json.loads(after[49])["name"] == "validate_email"

    def test_file_granularity_recomputes_whole_file(self, module_project, default_config, count_analyzed):
        """The same edit in file granularity recomputes all 50 records."""
        run_incremental(module_project, default_config)
        count_analyzed.clear()

        self._edit_validate_email(module_project)
        result = run_incremental(module_project, default_config)

        assert len(count_analyzed) == 50
        assert result.unit_summary is None
        assert len(_graph_lines(module_project, default_config)) == 50

    def test_whitespace_only_edit_recomputes_nothing(self, module_project, unit_config, count_analyzed):
        """Reformatting changes the file hash but no unit hash."""
        run_incremental(module_project, unit_config)
        count_analyzed.clear()
        source = (module_project / "checks.py").read_text()
        (module_project / "checks.py").write_text(source.replace("return value + 7", "return value  +  7"))

        result = run_incremental(module_project, unit_config)

        assert result.changes.modified == ["checks.py"]
        assert count_analyzed == []
        assert result.unit_summary["unchanged"] == 50

    def test_rename_detected(self, module_project, unit_config):
        """With rename detection a renamed function replaces the old record."""
        unit_config.incremental.detect_renames = True
        run_incremental(module_project, unit_config)

        source = make_unit_module(special="validate_phone")
        (module_project / "checks.py").write_text(source)
        result = run_incremental(module_project, unit_config)

        renames = result.unit_reports[0].renames
        assert [(r.old_name, r.new_name) for r in renames] == [("validate_email", "validate_phone")]
        ids = [r.id for r in read_graph(unit_config.graph_path(module_project))]
        assert "checks.py#validate_phone" in ids
        assert "checks.py#validate_email" not in ids
        assert len(ids) == 50

    def test_rename_not_detected_when_disabled(self, module_project, unit_config):
        """Without rename detection the same edit is a delete plus an add."""
        run_incremental(module_project, unit_config)

        (module_project / "checks.py").write_text(make_unit_module(special="validate_phone"))
        result = run_incremental(module_project, unit_config)

        summary = result.unit_summary
        assert (summary["added"], summary["deleted"], summary["renamed"]) == (1, 1, 0)
        ids = [r.id for r in read_graph(unit_config.graph_path(module_project))]
        assert "checks.py#validate_email" not in ids


class TestRunAnalysis:
    """Tests for run_analysis and preview_changes."""

    def test_full_flag(self, sample_project, default_config):
        """--full forces a full run even with a manifest."""
        run_analysis(sample_project, default_config)

        result = run_analysis(sample_project, default_config, full=True)

        assert result.mode == MODE_FULL
        assert result.reason == "full analysis requested"

    def test_incremental_disabled(self, sample_project, default_config):
        """Disabling incremental analysis always rebuilds."""
        default_config.incremental.enabled = False
        run_analysis(sample_project, default_config)

        result = run_analysis(sample_project, default_config)

        assert result.mode == MODE_FULL
        assert result.reason == "incremental analysis disabled"

    def test_preview_without_manifest(self, sample_project, default_config):
        assert preview_changes(sample_project, default_config) is None

    def test_preview_writes_nothing(self, sample_project, unit_config):
        """Previewing reports unit changes without touching artifacts."""
        run_analysis(sample_project, unit_config)
        graph_before = unit_config.graph_path(sample_project).read_bytes()
        service = sample_project / "app" / "service.py"
        service.write_text(service.read_text().replace("'widget'", "'gadget'"))

        report, unit_reports = preview_changes(sample_project, unit_config)

        assert report.modified == ["app/service.py"]
        assert [m.name for m in unit_reports[0].modified] == ["main"]
        assert unit_config.graph_path(sample_project).read_bytes() == graph_before

    def test_to_dict(self, sample_project, default_config):
        """The run summary is JSON-serializable."""
        result = run_analysis(sample_project, default_config)

        data = json.loads(json.dumps(result.to_dict()))

        assert data["mode"] == "full"
        assert data["records"] == 6
        assert data["written"] is True
