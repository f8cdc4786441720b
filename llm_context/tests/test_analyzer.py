"""Tests for turning parsed units into graph records."""

from llm_context.analyzer import analyze_files, analyze_parsed
from llm_context.parsers.python import PythonParser
from llm_context.parsers.registry import ParserRegistry


class TestAnalyzeParsed:
    """Tests for per-unit record construction."""

    def test_record_fields(self):
        """Records carry identity, signature, calls and language."""
        source = "async def fetch_rows(db, limit=10):\n    return await db.fetch(limit)\n"
        parsed = PythonParser().parse("app/rows.py", source)

        record = analyze_parsed(parsed)[0]

        assert record.id == "app/rows.py#fetch_rows"
        assert record.name == "fetch_rows"
        assert record.file == "app/rows.py"
        assert record.line == 1
        assert record.sig == "(db, limit=10)"
        assert record.is_async
        assert record.calls == ["db.fetch"]
        assert record.language == "python"

    def test_calls_deduplicated_and_capped(self):
        """Repeated calls appear once and the list is capped."""
        source = "def run():\n    a()\n    b()\n    a()\n    c()\n"
        parsed = PythonParser().parse("m.py", source)

        record = analyze_parsed(parsed, max_calls=2)[0]

        assert record.calls == ["a", "b"]

    def test_recursion_not_recorded(self):
        """A unit's call to itself is not part of its calls."""
        source = "def fact(n):\n    return 1 if n < 2 else n * fact(n - 1)\n"
        parsed = PythonParser().parse("m.py", source)

        assert analyze_parsed(parsed)[0].calls == []

    def test_restricted_to_keys(self):
        """Only the requested units are analyzed."""
        source = "def a():\n    pass\n\n\ndef b():\n    pass\n"
        parsed = PythonParser().parse("m.py", source)

        records = analyze_parsed(parsed, keys={"b"})

        assert [r.name for r in records] == ["b"]

    def test_effects_use_file_imports(self):
        """Effect confidence sees the imports of the whole file."""
        source = "import requests\n\n\ndef ping(url):\n    return requests.get(url)\n"
        parsed = PythonParser().parse("m.py", source)

        record = analyze_parsed(parsed)[0]

        assert record.effects == ["network"]
        assert record.patterns[0]["type"] == "side-effect-detection"


class TestAnalyzeFiles:
    """Tests for batch analysis."""

    def test_sample_project_records(self, sample_project):
        """Records reflect calls and effects of the sample project."""
        batch = analyze_files(
            sample_project,
            ["app/service.py", "app/store.py", "web/client.js"],
            ParserRegistry(),
        )

        records = {r.name: r for result in batch.results.values() for r in result.records}
        assert records["main"].calls == ["build_order", "place_order"]
        assert records["place_order"].calls == ["logger.info", "save_order"]
        assert records["place_order"].effects == ["logging"]
        assert "file_io" in records["save_order"].effects
        assert records["loadOrders"].is_async
        assert "axios.get" in records["loadOrders"].calls
        assert "network" in records["loadOrders"].effects
        assert records["render"].effects == ["logging"]

    def test_failures_and_unsupported(self, sample_project):
        """Unparseable files are reported without stopping the batch."""
        (sample_project / "app" / "broken.py").write_text("def broken(:\n")
        (sample_project / "README.md").write_text("# readme\n")

        batch = analyze_files(
            sample_project,
            ["app/broken.py", "README.md", "app/store.py"],
            ParserRegistry(),
        )

        assert list(batch.results) == ["app/store.py"]
        assert list(batch.failures) == ["app/broken.py"]
        assert batch.unsupported == ["README.md"]

    def test_parallel_results_in_input_order(self, sample_project):
        """Thread-pool results are merged in input order."""
        paths = ["web/client.js", "app/store.py", "app/service.py"]

        serial = analyze_files(sample_project, paths, ParserRegistry())
        parallel = analyze_files(sample_project, paths, ParserRegistry(), workers=3)

        assert list(parallel.results) == paths
        assert [
            r.to_json() for result in parallel.results.values() for r in result.records
        ] == [
            r.to_json() for result in serial.results.values() for r in result.records
        ]
