"""Audit logger for webhook lifecycle and dispatch events.

Events are appended as JSON Lines. Each line carries ``prev_hash``, the
SHA-256 of the previous line in the same file (null on the first line, also
after rotation), so truncation or edits are detectable with
``validate_audit_chain``. Payload contents are never part of an event.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from webhookbot.models import AuditEvent, AuditEventType, RiskLevel


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Validate the hash chain integrity of an audit log file."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    lines = text.split("\n")
    expected: str | None = None
    for number, line in enumerate(lines, start=1):
        if json.loads(line).get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=number)
        expected = _line_hash(line)
    return ChainValidationResult(valid=True)


class AuditLogger:
    """Append-only structured audit logger with rotation and hash chain."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._last_line: str | None = None
        # Continue the chain of an existing log across restarts
        if self.log_path.exists() and self.log_path.stat().st_size > 0:
            text = self.log_path.read_text().strip()
            if text:
                self._last_line = text.split("\n")[-1]

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        max_bytes = int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760"))
        backup_count = int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5"))
        return cls(log_path=log_path, max_bytes=max_bytes, backup_count=backup_count)

    def _backup(self, index: int) -> Path:
        return self.log_path.parent / f"{self.log_path.name}.{index}"

    def _maybe_rotate(self) -> bool:
        """Rotate when the active file is full; True if it was rotated."""
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return False

        oldest = self._backup(self._backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(self._backup_count - 1, 0, -1):
            if self._backup(i).exists():
                self._backup(i).rename(self._backup(i + 1))
        self.log_path.rename(self._backup(1))
        return True

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        data = json.loads(event.model_dump_json())

        lock_file = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_file, "w") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                # Each file carries its own chain, anchored at a null prev_hash
                if self._maybe_rotate():
                    self._last_line = None
                data["prev_hash"] = (
                    _line_hash(self._last_line) if self._last_line is not None else None
                )
                line = json.dumps(data, separators=(",", ":"))
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                self._last_line = line
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str = "success",
        risk_level: RiskLevel = RiskLevel.INFO,
        **fields: object,
    ) -> None:
        """Shorthand for logging an event built from keyword fields."""
        self.log(AuditEvent(
            event_type=event_type,
            action=action,
            result=result,
            risk_level=risk_level,
            **fields,  # type: ignore[arg-type]
        ))
