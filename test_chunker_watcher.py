"""Tests for source chunking and the incremental index watcher."""

import asyncio
import os

import pytest

from chunker import RegexChunker, chunk_codebase, chunk_summary, find_brace_block_end
from embeddings import EmbeddingIndex, load_index
from file_watcher import FileWatcher

TS_SOURCE = """import { a } from "./a";
import b from "./b";

export function greet(name: string) {
  const s = "}";
  return `hi ${name}`;
}

export interface User {
  id: string;
}

const x = 1;"""

PY_SOURCE = """import os


def helper(x):
    return x


class Box:
    def size(self):
        return 1

    value = 2"""


def test_typescript_chunks():
    chunks = RegexChunker().chunk_file("src/greet.ts", TS_SOURCE)
    assert [(c.type, c.name, c.start_line, c.end_line) for c in chunks] == [
        ("import", None, 1, 2),
        ("function", "greet", 4, 7),
        ("interface", "User", 9, 11),
    ]
    assert chunks[1].content.endswith("}")
    assert len(chunks[1].hash) == 16


def test_python_chunks_follow_indentation():
    chunks = RegexChunker().chunk_file("box.py", PY_SOURCE)
    assert [(c.type, c.name) for c in chunks] == [("import", None), ("function", "helper"), ("class", "Box")]
    assert chunks[2].end_line == len(PY_SOURCE.split("\n"))
    assert "value = 2" in chunks[2].content


def test_brace_scan_ignores_comments():
    lines = ["function f() {", "  // }", "  /* } */", "  return 1;", "}"]
    assert find_brace_block_end(lines, 0) == 5


def test_non_code_files():
    chunker = RegexChunker()
    [chunk] = chunker.chunk_file("README.md", "# Title\n\nSome notes")
    assert (chunk.type, chunk.start_line, chunk.end_line) == ("other", 1, 3)
    assert chunker.chunk_file("data.json", "x" * 6000) == []


def test_chunk_codebase_skips_dependencies(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "greet.ts").write_text(TS_SOURCE)
    (tmp_path / "box.py").write_text(PY_SOURCE)
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "index.js").write_text("function hidden() {\n  return 1;\n}\n")

    chunks = chunk_codebase(str(tmp_path))
    assert {c.file for c in chunks} == {"src/greet.ts", "box.py"}
    assert chunk_summary(chunks) == "6 chunks in 2 files | 2 functions | 1 classes | 1 interfaces"


def _write_sources(root):
    (root / "a.ts").write_text("export function one() {\n  return 1;\n}\n")
    (root / "b.ts").write_text("export function two() {\n  return 2;\n}\n")


def test_flush_replaces_chunks_of_changed_files(tmp_path):
    _write_sources(tmp_path)
    index = EmbeddingIndex(chunks=chunk_codebase(str(tmp_path)))
    requests = []

    def embed(texts, input_type="search_document"):
        requests.append(texts)
        return [[1.0, 0.0] for _ in texts]

    notified = []

    async def scenario():
        watcher = FileWatcher(str(tmp_path), lambda: index, embed, debounce=10, on_update=notified.append)
        (tmp_path / "a.ts").write_text("export function uno() {\n  return 1;\n}\n")
        (tmp_path / "b.ts").unlink()
        watcher.queue_update("a.ts", "change")
        watcher.queue_update(str(tmp_path / "b.ts"), "delete")
        updated = await watcher.flush_now()
        watcher.stop()
        return updated, watcher.pending

    updated, pending = asyncio.run(scenario())
    assert updated == ["a.ts", "b.ts"]
    assert pending == set()
    assert [c.name for c in index.chunks] == ["uno"]
    assert index.chunks[0].embedding == [1.0, 0.0]
    assert set(index.file_embeddings) == {"a.ts"}
    assert len(requests) == 1
    assert notified == [["a.ts", "b.ts"]]
    assert [c.name for c in load_index(str(tmp_path)).chunks] == ["uno"]


def test_flush_without_index_drops_events(tmp_path):
    _write_sources(tmp_path)

    async def scenario():
        watcher = FileWatcher(str(tmp_path), lambda: None, lambda texts, input_type="": [[1.0]], debounce=10)
        watcher.queue_update("a.ts", "change")
        updated = await watcher.flush_now()
        watcher.stop()
        return updated, watcher.pending

    assert asyncio.run(scenario()) == ([], set())


def test_scan_detects_changes(tmp_path):
    _write_sources(tmp_path)
    root = str(tmp_path)

    async def scenario():
        watcher = FileWatcher(root, lambda: None, None, debounce=10, poll_interval=60)
        assert watcher.start() is True
        assert watcher.start() is False
        (tmp_path / "a.ts").write_text("export function one() {\n  return 100;\n}\n")
        (tmp_path / "b.ts").unlink()
        (tmp_path / "c.py").write_text("def three():\n    return 3\n")
        events = watcher.scan()
        status = watcher.status()
        watcher.stop()
        return events, status, watcher.status()

    events, status, stopped = asyncio.run(scenario())
    assert sorted(events) == sorted([
        f"change:{os.path.join(root, 'a.ts')}",
        f"add:{os.path.join(root, 'c.py')}",
        f"delete:{os.path.join(root, 'b.ts')}",
    ])
    assert status == "File watcher active (3 pending updates)"
    assert stopped == "File watcher stopped"


def test_unknown_event_type_rejected(tmp_path):
    watcher = FileWatcher(str(tmp_path), lambda: None, None)
    with pytest.raises(ValueError):
        watcher.queue_update("a.ts", "rename")


def _unit_embed(texts, input_type="search_document"):
    return [[1.0, 0.0] for _ in texts]


def test_add_and_change_in_one_batch_chunk_once(tmp_path):
    _write_sources(tmp_path)
    index = EmbeddingIndex(chunks=chunk_codebase(str(tmp_path)))

    async def scenario():
        watcher = FileWatcher(str(tmp_path), lambda: index, _unit_embed, debounce=10)
        (tmp_path / "c.ts").write_text("export function three() {\n  return 3;\n}\n")
        watcher.queue_update("c.ts", "add")
        watcher.queue_update("c.ts", "change")
        updated = await watcher.flush_now()
        watcher.stop()
        return updated

    assert asyncio.run(scenario()) == ["c.ts"]
    assert sorted(c.name for c in index.chunks) == ["one", "three", "two"]
    assert [c.file for c in index.chunks].count("c.ts") == 1


def test_debounce_collapses_burst_into_one_flush(tmp_path):
    _write_sources(tmp_path)
    index = EmbeddingIndex(chunks=chunk_codebase(str(tmp_path)))
    notified = []

    async def scenario():
        watcher = FileWatcher(str(tmp_path), lambda: index, _unit_embed, debounce=0.05,
                              on_update=notified.append)
        watcher.queue_update("a.ts", "change")
        await asyncio.sleep(0.01)
        watcher.queue_update("b.ts", "change")
        await asyncio.sleep(0.01)
        watcher.queue_update("a.ts", "change")
        assert notified == []
        await asyncio.sleep(0.3)
        watcher.stop()

    asyncio.run(scenario())
    assert notified == [["a.ts", "b.ts"]]
