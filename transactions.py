"""
Multi-file edit transactions with all-or-nothing apply and later rollback.
"""

import logging
import os
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from snapshots import OperationResult, apply_content, read_or_none

logger = logging.getLogger(__name__)

EDIT_KINDS = ("create", "modify", "delete")


@dataclass
class FileEdit:
    path: str
    kind: str
    content: Optional[str] = None
    old_text: Optional[str] = None
    new_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "FileEdit":
        kind = data.get("type") or data.get("kind")
        if kind not in EDIT_KINDS:
            raise ValueError(f"Unknown edit type: {kind}")
        return cls(
            path=data["path"],
            kind=kind,
            content=data.get("content"),
            old_text=data.get("old_text", data.get("oldText")),
            new_text=data.get("new_text", data.get("newText")),
        )


@dataclass
class EditTransaction:
    id: str
    timestamp: float
    edits: List[FileEdit]
    backups: Dict[str, Optional[str]] = field(default_factory=dict)
    applied: bool = False


class TransactionLog:
    """Holds transactions for the session so they can be rolled back by id."""

    def __init__(self, root: str = "."):
        self.root = os.path.abspath(root)
        self._transactions: Dict[str, EditTransaction] = {}

    def _resolve(self, path: str) -> str:
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.root, path))

    def create_transaction(self, edits: List[FileEdit]) -> EditTransaction:
        """Capture backups for every target before anything is touched."""
        tx = EditTransaction(
            id=f"tx_{int(time.time() * 1000)}_{''.join(random.choices(string.ascii_lowercase + string.digits, k=6))}",
            timestamp=time.time(),
            edits=list(edits),
        )
        for edit in tx.edits:
            abs_path = self._resolve(edit.path)
            if abs_path not in tx.backups:
                tx.backups[abs_path] = read_or_none(abs_path)
        self._transactions[tx.id] = tx
        return tx

    def _apply_edit(self, edit: FileEdit) -> None:
        abs_path = self._resolve(edit.path)
        if edit.kind == "create":
            apply_content(abs_path, edit.content or "")
        elif edit.kind == "modify":
            if not os.path.isfile(abs_path):
                raise FileNotFoundError(f"File not found: {edit.path}")
            if edit.content is not None:
                apply_content(abs_path, edit.content)
            elif edit.old_text is not None:
                current = read_or_none(abs_path) or ""
                if edit.old_text not in current:
                    raise ValueError(f"Text not found in {edit.path}")
                apply_content(abs_path, current.replace(edit.old_text, edit.new_text or "", 1))
            else:
                raise ValueError(f"Modify edit for {edit.path} needs content or old_text")
        elif edit.kind == "delete":
            if os.path.exists(abs_path):
                os.remove(abs_path)

    def apply_transaction(self, tx: EditTransaction) -> OperationResult:
        """Apply edits in order; on the first failure restore every touched path."""
        touched: List[str] = []
        for edit in tx.edits:
            abs_path = self._resolve(edit.path)
            try:
                self._apply_edit(edit)
                if abs_path not in touched:
                    touched.append(abs_path)
            except (OSError, ValueError) as e:
                logger.warning(f"Transaction {tx.id} failed on {edit.path}: {e}")
                rolled_back = self._restore(tx, touched)
                tx.applied = False
                return OperationResult(False, f"Error: {e}\nRolled back {rolled_back} files")
        tx.applied = True
        logger.info(f"Transaction {tx.id} applied ({len(tx.edits)} edits)")
        return OperationResult(True, f"Applied {len(tx.edits)} edits (transaction {tx.id})")

    def _restore(self, tx: EditTransaction, paths: List[str]) -> int:
        restored = 0
        for abs_path in paths:
            try:
                apply_content(abs_path, tx.backups.get(abs_path))
                restored += 1
            except OSError as e:
                logger.error(f"Rollback of {abs_path} failed: {e}")
        return restored

    def rollback_transaction(self, tx_id: str) -> OperationResult:
        tx = self._transactions.get(tx_id)
        if tx is None:
            return OperationResult(False, f"Transaction {tx_id} not found")
        if not tx.applied:
            return OperationResult(False, "Transaction not applied")
        restored = self._restore(tx, list(tx.backups.keys()))
        tx.applied = False
        return OperationResult(True, f"Rolled back {restored} files")

    def get(self, tx_id: str) -> Optional[EditTransaction]:
        return self._transactions.get(tx_id)

    def list_transactions(self) -> List[EditTransaction]:
        """Ten newest transactions, newest first."""
        ordered = sorted(self._transactions.values(), key=lambda t: t.timestamp, reverse=True)
        return ordered[:10]

    def preview_transaction(self, tx: EditTransaction) -> str:
        lines = [f"Transaction {tx.id} ({len(tx.edits)} edits):"]
        for edit in tx.edits:
            if edit.kind == "create":
                lines.append(f"  + create {edit.path} ({len((edit.content or '').splitlines())} lines)")
            elif edit.kind == "modify":
                if edit.content is not None:
                    lines.append(f"  ~ modify {edit.path} (replace, {len(edit.content.splitlines())} lines)")
                else:
                    old_n = len((edit.old_text or "").splitlines())
                    new_n = len((edit.new_text or "").splitlines())
                    lines.append(f"  ~ modify {edit.path} ({old_n} -> {new_n} lines)")
            else:
                lines.append(f"  - delete {edit.path}")
        return "\n".join(lines)

    def format_transactions(self) -> str:
        txs = self.list_transactions()
        if not txs:
            return "No transactions."
        lines = []
        for tx in txs:
            when = datetime.fromtimestamp(tx.timestamp).strftime("%H:%M:%S")
            state = "applied" if tx.applied else "not applied"
            files = ", ".join(e.path for e in tx.edits[:3])
            more = f" +{len(tx.edits) - 3}" if len(tx.edits) > 3 else ""
            lines.append(f"{tx.id}  {when}  [{state}]  {files}{more}")
        return "\n".join(lines)

    def multi_file_edit(self, edits: List[FileEdit]) -> OperationResult:
        """Create, preview and apply a transaction in one call."""
        tx = self.create_transaction(edits)
        preview = self.preview_transaction(tx)
        result = self.apply_transaction(tx)
        if not result.success:
            return OperationResult(False, f"{preview}\n\n{result.message}")
        return OperationResult(
            True,
            f"{preview}\n\n{result.message}\nUse rollback_transaction with id {tx.id} to revert.",
        )
