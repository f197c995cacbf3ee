"""Tests for pulseline.shared.formatters.tool_target."""

from pulseline.shared.formatters.tool_target import (
    extract_target,
    target_extractor,
    truncate_path,
    truncate_str,
    _EXTRACTORS,
)


# ── Truncation ──


class TestTruncateStr:
    def test_short_text_unchanged(self):
        assert truncate_str("ls -la", 30) == "ls -la"

    def test_exact_width_unchanged(self):
        assert truncate_str("x" * 30, 30) == "x" * 30

    def test_long_text_gets_ellipsis(self):
        result = truncate_str("a" * 40, 30)
        assert result == "a" * 27 + "..."
        assert len(result) == 30

    def test_multibyte_counts_characters(self):
        text = "é" * 10 + "日本語" * 10
        result = truncate_str(text, 20)
        assert len(result) == 20
        assert result.endswith("...")
        assert result.startswith("é" * 10)

    def test_tiny_width(self):
        assert truncate_str("abcdef", 2) == "ab"


class TestTruncatePath:
    def test_short_path_unchanged(self):
        assert truncate_path("/src/app.py", 30) == "/src/app.py"

    def test_long_path_keeps_filename(self):
        path = "/home/user/projects/very/deep/tree/module.py"
        assert truncate_path(path, 30) == ".../module.py"

    def test_long_filename_is_trimmed(self):
        name = "an_extremely_long_generated_filename_for_tests.py"
        result = truncate_path("/tmp/" + name, 20)
        assert len(result) == 20
        assert result.endswith("...")


# ── Extractors ──


class TestExtractTarget:
    def test_file_tools(self):
        for name in ("Read", "Write", "Edit", "NotebookEdit"):
            assert extract_target(name, {"file_path": "/a/b.py"}) == "/a/b.py"

    def test_bash_command(self):
        assert extract_target("Bash", {"command": "pytest -q tests/test_layout.py --maxfail=1"}) == (
            "pytest -q tests/test_layout..."
        )

    def test_search_pattern_width(self):
        result = extract_target("Grep", {"pattern": "def [a-z_]+\\(self, .*\\) -> None"})
        assert len(result) == 20

    def test_web_tools(self):
        assert extract_target("WebFetch", {"url": "https://example.com"}) == "https://example.com"
        assert extract_target("WebSearch", {"query": "rich text styles"}) == "rich text styles"

    def test_task_has_no_target(self):
        assert extract_target("Task", {"description": "Explore"}) is None

    def test_unknown_tool_falls_back(self):
        assert extract_target("mcp__fs__read", {"file_path": "/x.txt"}) == "/x.txt"
        assert extract_target("Custom", {"command": "make"}) == "make"
        assert extract_target("Custom", {"other": 1}) is None

    def test_non_dict_input(self):
        assert extract_target("Read", None) is None
        assert extract_target("Read", "file.py") is None

    def test_wrong_typed_argument(self):
        assert extract_target("Read", {"file_path": 42}) is None

    def test_registering_an_extractor(self):
        @target_extractor("UnitTestTool")
        def _target_unit(args):
            return args.get("thing")

        try:
            assert extract_target("UnitTestTool", {"thing": "widget"}) == "widget"
        finally:
            _EXTRACTORS.pop("UnitTestTool", None)
