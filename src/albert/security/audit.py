# Security audit trail.
# Created: 2026-10-05
#
# One JSON object per line in <config dir>/audit.jsonl. Records OAuth activity
# (registrations, grants, revocations, key rotation), ability executions and
# admin changes. Lines are only ever appended.

from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("albert.audit")

AuditListener = Callable[[dict[str, Any]], None]


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"  # admin change, e.g. an ability disabled
    CRITICAL = "critical"  # every token invalidated
    ALERT = "alert"  # replayed or forged credentials


@dataclass(frozen=True)
class AuditEvent:
    action: str
    target: str
    actor: str = "system"
    status: str = "success"
    severity: AuditSeverity = AuditSeverity.INFO
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "actor": self.actor,
            "action": self.action,
            "target": self.target,
            "status": self.status,
            "context": self.context,
        }


class AuditLogger:
    """Appends audit events to a JSONL file.

    A failed write is reported on the ``albert.audit`` logger at CRITICAL and
    the request carries on. Listeners registered with ``on_log`` see every
    record that reached the file.
    """

    def __init__(self, log_path: Path, enabled: bool = True):
        self.log_path = log_path
        self.enabled = enabled
        self._listeners: list[AuditListener] = []

    def on_log(self, listener: AuditListener) -> None:
        self._listeners.append(listener)

    def log(self, event: AuditEvent) -> None:
        if not self.enabled:
            return
        record = event.to_record()
        line = json.dumps(record, default=str)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:
            logger.critical("Audit write to %s failed (%s): %s", self.log_path, exc, line)
            return

        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("Audit listener %r failed", listener)

    def log_event(
        self,
        action: str,
        target: str,
        actor: str = "system",
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Record one event and return its id."""
        event = AuditEvent(
            action=action,
            target=target,
            actor=actor,
            status=status,
            severity=severity,
            context=context,
        )
        self.log(event)
        return event.id

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """The last *limit* records, oldest first. Unreadable lines are skipped."""
        if not self.log_path.exists():
            return []
        tail: deque[str] = deque(maxlen=limit)
        with self.log_path.open(encoding="utf-8") as fh:
            for line in fh:
                if line.strip():
                    tail.append(line)

        records = []
        for line in tail:
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit line in %s", self.log_path)
        return records
