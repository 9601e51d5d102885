"""Tests for snapshot undo/restore and multi-file transactions."""

import os

from snapshots import SnapshotStore
from transactions import FileEdit, TransactionLog


def _write(store, path, content):
    store.take_snapshot(path, "write")
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def test_undo_restores_previous_content_then_removes_new_file(tmp_path):
    store = SnapshotStore(str(tmp_path))
    target = str(tmp_path / "a.ts")
    _write(store, target, "x")
    _write(store, target, "y")

    result = store.undo_last_change()
    assert result.success
    assert _read(target) == "x"

    result = store.undo_last_change()
    assert result.success
    assert "removed" in result.message
    assert not os.path.exists(target)

    assert not store.undo_last_change().success


def test_undo_by_path_only_touches_that_file(tmp_path):
    store = SnapshotStore(str(tmp_path))
    a = str(tmp_path / "a.ts")
    b = str(tmp_path / "b.ts")
    _write(store, a, "a1")
    _write(store, b, "b1")

    result = store.undo_last_change("a.ts")
    assert result.success
    assert not os.path.exists(a)
    assert _read(b) == "b1"
    assert not store.undo_last_change("a.ts").success


def test_global_undo_keeps_file_history_consistent(tmp_path):
    store = SnapshotStore(str(tmp_path))
    a = str(tmp_path / "a.ts")
    _write(store, a, "1")
    _write(store, a, "2")
    store.undo_last_change()
    assert len(store.get_file_history("a.ts")) == 1


def test_histories_are_bounded(tmp_path):
    store = SnapshotStore(str(tmp_path), max_file_history=3, max_change_log=4)
    a = str(tmp_path / "a.ts")
    for i in range(6):
        _write(store, a, str(i))
    assert len(store.get_recent_changes(100)) == 4
    assert len(store.get_file_history("a.ts")) == 3


def test_restore_snapshot_keeps_it_in_the_log(tmp_path):
    store = SnapshotStore(str(tmp_path))
    a = str(tmp_path / "a.ts")
    _write(store, a, "first")
    snap = store.take_snapshot(a, "edit")
    with open(a, "w", encoding="utf-8") as f:
        f.write("second")

    assert store.restore_snapshot(snap.id).success
    assert _read(a) == "first"
    assert store.get_recent_changes(1)[0].id == snap.id
    assert not store.restore_snapshot("snap_missing").success


def test_format_history(tmp_path):
    store = SnapshotStore(str(tmp_path))
    assert store.format_history([]) == "No changes recorded."
    _write(store, str(tmp_path / "a.ts"), "x")
    text = store.format_history(store.get_recent_changes())
    assert "a.ts" in text
    assert "did not exist" in text


def test_transaction_failure_rolls_back_earlier_edits(tmp_path):
    (tmp_path / "f2.ts").write_text("const x = 1;\n", encoding="utf-8")
    log = TransactionLog(str(tmp_path))
    tx = log.create_transaction([
        FileEdit(path="f1.ts", kind="create", content="export const a = 1;\n"),
        FileEdit(path="f2.ts", kind="modify", old_text="foo", new_text="bar"),
    ])

    result = log.apply_transaction(tx)

    assert not result.success
    assert "Rolled back 1 files" in result.message
    assert not (tmp_path / "f1.ts").exists()
    assert (tmp_path / "f2.ts").read_text(encoding="utf-8") == "const x = 1;\n"
    assert not tx.applied


def test_transaction_apply_and_rollback(tmp_path):
    (tmp_path / "f1.ts").write_text("a", encoding="utf-8")
    (tmp_path / "old.ts").write_text("gone soon", encoding="utf-8")
    log = TransactionLog(str(tmp_path))
    tx = log.create_transaction([
        FileEdit(path="f1.ts", kind="modify", content="b"),
        FileEdit(path="new.ts", kind="create", content="new"),
        FileEdit(path="old.ts", kind="delete"),
    ])

    assert log.apply_transaction(tx).success
    assert (tmp_path / "f1.ts").read_text(encoding="utf-8") == "b"
    assert not (tmp_path / "old.ts").exists()

    result = log.rollback_transaction(tx.id)
    assert result.success
    assert (tmp_path / "f1.ts").read_text(encoding="utf-8") == "a"
    assert (tmp_path / "old.ts").read_text(encoding="utf-8") == "gone soon"
    assert not (tmp_path / "new.ts").exists()

    assert not log.rollback_transaction(tx.id).success
    assert not log.rollback_transaction("tx_unknown").success


def test_file_edit_from_dict_accepts_camel_case():
    edit = FileEdit.from_dict({"path": "a.ts", "type": "modify", "oldText": "x", "newText": "y"})
    assert edit.kind == "modify"
    assert edit.old_text == "x"
    assert edit.new_text == "y"


def test_multi_file_edit_reports_preview(tmp_path):
    log = TransactionLog(str(tmp_path))
    result = log.multi_file_edit([FileEdit(path="a.ts", kind="create", content="1\n2\n")])
    assert result.success
    assert "+ create a.ts (2 lines)" in result.message
    assert "rollback_transaction" in result.message
    assert "applied" in log.format_transactions()
