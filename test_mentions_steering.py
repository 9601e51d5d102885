"""Tests for @ mentions, steering rules and diagnostics filtering."""

import pytest

from backend import LocalBackend
from diagnostics import (
    Diagnostic, DiagnosticsResult, check_css, check_json, filter_actionable, format_diagnostics,
    parse_tsc_output,
)
from mentions import Mention, build_mention_context, format_mentions, parse_mentions
from steering import (
    build_steering_context, discover_steering_files, format_steering_list, get_active_steering,
    parse_frontmatter, parse_steering_mentions,
)


@pytest.fixture
def backend(project):
    (project / "src").mkdir()
    (project / "src" / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")
    (project / "src" / "util").mkdir()
    (project / "src" / "util" / "fmt.ts").write_text("export function fmt() {}\n", encoding="utf-8")
    (project / "src" / "notes.bin").write_text("binary", encoding="utf-8")
    (project / "node_modules").mkdir()
    return LocalBackend(str(project))


def write_steering(project, name, text):
    directory = project / ".bedrock-pilot" / "steering"
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.md").write_text(text, encoding="utf-8")


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------

def test_parse_file_and_git_mentions(backend):
    clean, mentions = parse_mentions("Look at @file:src/a.ts and @git", backend)
    assert "@" not in clean
    assert clean.startswith("Look at")
    assert [(m.type, m.value) for m in mentions] == [("file", "src/a.ts"), ("git", "status")]
    assert mentions[0].content == "export const a = 1;\n"


def test_missing_and_escaping_paths_are_dropped(backend):
    clean, mentions = parse_mentions("fix @file:src/gone.ts and @file:../secret.txt now", backend)
    assert mentions == []
    assert "gone.ts" not in clean
    assert "secret" not in clean


def test_git_diff_is_not_also_status(backend):
    _, mentions = parse_mentions("review @git:diff", backend)
    assert [(m.type, m.value) for m in mentions] == [("git", "diff")]


def test_web_and_symbol_mentions(backend):
    clean, mentions = parse_mentions("use @symbol:fmt then @web:react hooks", backend)
    assert [(m.type, m.value) for m in mentions] == [("web", "react hooks"), ("symbol", "fmt")]
    assert clean == "use  then"


def test_folder_mention_inlines_code_files(backend):
    _, mentions = parse_mentions("@folder:src", backend)
    content = mentions[0].content
    assert "--- src/a.ts ---" in content
    assert "📁 src/util/" in content
    assert "export function fmt() {}" in content
    assert "notes.bin" not in content


def test_build_mention_context(backend):
    mentions = [Mention("file", "src/a.ts", "export const a = 1;"), Mention("symbol", "fmt")]
    context = build_mention_context(mentions, backend)
    assert context.startswith("\n\n=== MENTIONED CONTEXT ===\n")
    assert "\n📄 @file:src/a.ts\n```\nexport const a = 1;\n```\n" in context
    assert "search_symbols" in context
    assert build_mention_context([], backend) == ""
    assert format_mentions(mentions) == "📄 file:src/a.ts | 🔍 symbol:fmt"


def test_docs_mention_inlines_matching_doc(backend, project):
    (project / "docs").mkdir()
    (project / "docs" / "stripe.md").write_text("npm install stripe\n", encoding="utf-8")
    clean, mentions = parse_mentions("charge cards @docs:stripe", backend)
    assert clean == "charge cards"
    assert [(m.type, m.value) for m in mentions] == [("docs", "stripe")]

    context = build_mention_context(mentions, backend)
    assert "=== PROJECT DOCS ===" in context
    assert "📚 stripe.md" in context
    assert "npm install stripe" in context

    missing = build_mention_context([Mention("docs", "twilio")], backend)
    assert "[No document in docs/ matches this]" in missing


# ---------------------------------------------------------------------------
# Steering
# ---------------------------------------------------------------------------

def test_frontmatter_parsing():
    meta, body = parse_frontmatter("---\ninclusion: manual\ndescription: API rules\n---\nUse REST.\n")
    assert meta == {"inclusion": "manual", "description": "API rules"}
    assert body == "Use REST."
    assert parse_frontmatter("plain body") == ({}, "plain body")


def test_steering_inclusion_modes(project):
    write_steering(project, "style", "Use two-space indents.")
    write_steering(project, "react", '---\ninclusion: fileMatch\nfileMatchPattern: "src/**/*.tsx"\n---\nHooks only.')
    write_steering(project, "api", "---\ninclusion: manual\ndescription: API rules\n---\nUse REST.")
    write_steering(project, "odd", "---\ninclusion: sometimes\n---\nOdd.")

    files = discover_steering_files(str(project))
    by_name = {f.name: f for f in files}
    assert by_name["odd"].inclusion == "always"

    names = lambda fs: sorted(f.name for f in fs)
    assert names(get_active_steering(files)) == ["odd", "style"]
    assert names(get_active_steering(files, ["src/components/App.tsx"])) == ["odd", "react", "style"]
    assert names(get_active_steering(files, ["src/App.ts"], ["#api"])) == ["api", "odd", "style"]

    context = build_steering_context(get_active_steering(files, manual_includes=["api"]))
    assert context.startswith("## Steering Rules")
    assert "### api\n*API rules*" in context

    listing = format_steering_list(files)
    assert "  react [fileMatch] -> src/**/*.tsx" in listing


def test_steering_mentions_only_strip_manual_files(project):
    write_steering(project, "api", "---\ninclusion: manual\n---\nUse REST.")
    files = discover_steering_files(str(project))
    clean, found = parse_steering_mentions("Follow #api for issue #42", files)
    assert found == ["api"]
    assert clean == "Follow  for issue #42"


def test_no_steering_files(project):
    assert discover_steering_files(str(project)) == []
    assert format_steering_list([]).startswith("No steering files")
    assert build_steering_context([]) == ""


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def test_parse_tsc_output():
    out = "src/a.ts(3,5): error TS2304: Cannot find name 'x'.\nFound 1 error.\n"
    diags = parse_tsc_output(out)
    assert len(diags) == 1
    d = diags[0]
    assert (d.file, d.line, d.column, d.severity, d.code) == ("src/a.ts", 3, 5, "error", "TS2304")
    assert d.message == "Cannot find name 'x'."


def test_json_and_css_checks():
    assert check_json("a.json", '{"ok": true}') == []
    assert check_json("a.json", '{"ok": }')[0].source == "json"
    assert check_css("a.css", "/* { */ a { color: red; }") == []
    assert check_css("a.css", "a { color: red;")[0].message == "1 unclosed braces"
    assert check_css("a.css", "}")[0].message == "Unexpected closing brace"


def test_filter_actionable():
    def diag(message, file="src/a.ts"):
        return Diagnostic(file=file, line=1, column=1, severity="error", message=message, source="typescript")

    diags = [
        diag("Cannot find module 'react'"),
        diag("Module '\"x\"' has no exported member 'y'."),
        diag("Type 'string' is not assignable to type 'number'."),
        diag("anything", file="node_modules/x/index.d.ts"),
    ]
    assert [d.message for d in filter_actionable(diags)] == ["Type 'string' is not assignable to type 'number'."]
    assert len(filter_actionable(diags, skip_dependency_errors=False)) == 2


def test_format_diagnostics():
    result = DiagnosticsResult(files_checked=2)
    assert format_diagnostics(result) == "2 files checked, no problems"
    result.diagnostics = [Diagnostic(file="src/a.ts", line=1, column=2, severity="error",
                                     message="bad", source="typescript", code="TS1")]
    text = format_diagnostics(result)
    assert text.splitlines() == ["2 files: 1 errors, 0 warnings", "", "src/a.ts", "  error 1:2 bad [TS1]"]
