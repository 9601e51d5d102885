"""Tests for the symbol index and the background process registry."""

import json
import time

import pytest

from codebase_index import (
    IndexCache, RegexSymbolExtractor, find_references, format_symbol_results, get_file_context,
    index_codebase, search_symbols,
)
from processes import ProcessRegistry, detect_port, format_uptime


@pytest.fixture
def indexed_project(project):
    (project / "src").mkdir()
    (project / "src" / "user.ts").write_text(
        "import { db } from './db';\n"
        "export interface User { id: string }\n"
        "export async function loadUser(id: string) {\n"
        "  return db.get(id);\n"
        "}\n"
        "const cache = new Map();\n",
        encoding="utf-8",
    )
    (project / "src" / "db.ts").write_text("export const db = { get: (id) => id };\n", encoding="utf-8")
    (project / "tools.py").write_text("import os\n\nclass Runner:\n    def _go(self):\n        pass\n", encoding="utf-8")
    (project / "generated").mkdir()
    (project / "generated" / "out.ts").write_text("export const loadUserGenerated = 1;\n", encoding="utf-8")
    (project / ".gitignore").write_text("generated/\n", encoding="utf-8")
    (project / "node_modules").mkdir()
    (project / "node_modules" / "lib.js").write_text("function loadUser() {}\n", encoding="utf-8")
    (project / "package.json").write_text(json.dumps({
        "dependencies": {"react": "^18.0.0"}, "devDependencies": {"typescript": "^5.0.0"},
    }), encoding="utf-8")
    return project


def test_regex_extraction():
    extractor = RegexSymbolExtractor()
    symbols = extractor.extract([
        "export default function App() {",
        "type Props = {}",
        "let count = 0",
        "import React from 'react'",
    ], ".tsx")
    assert [(s.name, s.kind, s.exported) for s in symbols] == [
        ("App", "function", True), ("Props", "type", False), ("count", "variable", False), ("react", "import", False),
    ]
    assert extractor.extract(["fn main() {}"], ".rs") == []


def test_index_walks_project_and_skips_ignored(indexed_project):
    index = index_codebase(str(indexed_project))
    paths = {f.relative_path for f in index.files}
    assert {"src", "src/user.ts", "src/db.ts", "tools.py", "package.json"} <= paths
    assert not any(p.startswith(("generated", "node_modules", ".gitignore")) for p in paths)

    names = [(s.name, s.kind) for s in index.symbols["src/user.ts"]]
    assert names == [("./db", "import"), ("User", "interface"), ("loadUser", "function"), ("cache", "variable")]
    py = {s.name: s for s in index.symbols["tools.py"]}
    assert py["Runner"].exported and not py["_go"].exported

    assert index.dependencies == {"react": "^18.0.0"}
    assert index.dev_dependencies == {"typescript": "^5.0.0"}
    assert "Code files: 3" in index.summary
    assert "Interfaces: 1" in index.summary


def test_symbol_search_and_references(indexed_project):
    index = index_codebase(str(indexed_project))
    results = search_symbols(index, "LOADUSER")
    assert [(rel, s.name) for rel, s in results] == [("src/user.ts", "loadUser")]
    assert format_symbol_results(results) == "src/user.ts:3  function loadUser (exported)"
    assert format_symbol_results([]) == "No symbols found."

    refs = find_references(index, "db.get")
    assert refs == ["src/user.ts:4: return db.get(id);"]

    context = get_file_context(index, "src/user.ts")
    assert "Imports:\n  - ./db" in context
    assert "  - function: loadUser (line 3)" in context
    assert get_file_context(index, "package.json").endswith("(no symbols indexed)")


def test_index_cache_ttl_and_invalidation(indexed_project):
    cache = IndexCache(ttl=60)
    first = cache.get(str(indexed_project))
    assert cache.get(str(indexed_project)) is first
    cache.invalidate(str(indexed_project))
    assert cache.get(str(indexed_project)) is not first
    assert IndexCache(ttl=0).get(str(indexed_project)) is not None


@pytest.mark.parametrize("line, port", [
    ("Local: http://localhost:5173/", 5173),
    ("Server listening on port 8080", 8080),
    ("ready on 0.0.0.0:3000", 3000),
    ("compiled 12 modules", None),
    ("port: 80", None),
])
def test_detect_port(line, port):
    assert detect_port(line) == port


def test_format_uptime():
    assert format_uptime(5) == "5s"
    assert format_uptime(125) == "2m 5s"
    assert format_uptime(7260) == "2h 1m"


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_process_lifecycle(project):
    registry = ProcessRegistry()
    try:
        bp, reused = registry.start("echo 'listening on port 4321' && sleep 30", str(project))
        assert not reused
        assert bp.id == 1
        assert registry.start("echo 'listening on port 4321' && sleep 30", str(project)) == (bp, True)

        assert wait_for(lambda: bp.port == 4321)
        output, status = registry.output(bp.id)
        assert "listening on port 4321" in output
        assert status == "running"
        assert "4321" in registry.format_list()

        assert registry.stop(bp.id) == (True, "Process stopped: 1")
        assert registry.stop(bp.id) == (False, "Process already stopped: 1")
        assert registry.stop(99) == (False, "Process not found: 99")
    finally:
        registry.stop_all()


def test_finished_process_reports_exit(project):
    registry = ProcessRegistry()
    bp, _ = registry.start("exit 3", str(project))
    assert wait_for(lambda: bp.status != "running")
    assert bp.status == "error"
    assert wait_for(lambda: "[exit] Process exited with code 3" in registry.output(bp.id)[0])
    assert registry.stop_all() == 0
