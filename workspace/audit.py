"""
workspace/audit.py -- Append-only audit trail of privileged actions.

Writes are a side effect that must never affect the operation they describe:

  - record() only enqueues onto a bounded queue.Queue and returns at once.
  - A single daemon writer thread drains the queue and inserts rows.
  - A full queue, a database error, or a bad payload is logged on the
    "expertsman.audit" logger and the entry is dropped. Nothing is raised
    back to the caller.

Before start() is called (scripts, some tests) record() writes inline, with
the same swallow-and-log policy.

Metadata is scrubbed before it is stored: any key containing "password",
"token" or "secret" (case-insensitive, at any nesting depth) has its value
replaced with "[REDACTED]".

Rows are never updated. list_recent() is the only read path.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from typing import Any, Optional

from sqlalchemy import Column, Integer, String, Table, Text
from sqlalchemy.engine import Engine

from core.database import init_schema, metadata, now_iso
from workspace.models import AuditLogEntry

logger = logging.getLogger("expertsman.audit")

_audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("created_at", String(32), nullable=False, index=True),
    Column("actor_type", String(20), nullable=False),
    Column("actor_id", String(255), nullable=False),
    Column("workspace_id", String(36)),
    Column("action", String(100), nullable=False),
    Column("target_type", String(50)),
    Column("target_id", String(255)),
    Column("result", String(20), nullable=False),
    Column("status_code", Integer),
    Column("reason", Text),
    Column("ip", String(64)),
    Column("user_agent", Text),
    Column("origin", String(255)),
    Column("metadata_json", Text),
)

_SENSITIVE_FRAGMENTS = ("password", "token", "secret")
_REDACTED = "[REDACTED]"
_STOP = object()


def redact(value: Any) -> Any:
    """Return value with sensitive dict keys masked, recursing into dicts and lists."""
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if any(fragment in key.lower() for fragment in _SENSITIVE_FRAGMENTS):
                cleaned[key] = _REDACTED
            else:
                cleaned[key] = redact(raw_value)
        return cleaned
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


class AuditLog:
    """Best-effort audit writer over the audit_logs table.

    Usage:
        audit = AuditLog(engine)
        audit.start()
        audit.record(actor_type="master", actor_id="master", action="workspace.create", result="success")
        ...
        audit.close()
    """

    def __init__(self, engine: Engine, max_queue: int = 1000) -> None:
        self.engine = engine
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None
        init_schema(engine)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="audit-writer", daemon=True)
        self._thread.start()

    def flush(self, timeout: float = 5.0) -> None:
        """Block until every queued entry has been written or dropped."""
        if self._thread is None:
            return
        done = threading.Event()

        def _wait() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        if not done.wait(timeout):
            logger.warning("Audit flush timed out with ~%d entries pending", self._queue.qsize())

    def close(self, timeout: float = 5.0) -> None:
        """Drain the queue and stop the writer thread."""
        if self._thread is None:
            return
        self.flush(timeout)
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._write(item)
            except Exception:  # the writer thread must survive any single bad entry
                logger.exception("Audit write failed; entry dropped (action=%s)", getattr(item, "action", "?"))
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(
        self,
        *,
        actor_type: str,
        actor_id: str,
        action: str,
        result: str,
        workspace_id: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        origin: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Queue one audit entry. Never raises."""
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            created_at=now_iso(),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            result=result,
            workspace_id=workspace_id,
            target_type=target_type,
            target_id=target_id,
            status_code=status_code,
            reason=reason,
            ip=ip,
            user_agent=user_agent,
            origin=origin,
            metadata=redact(metadata or {}),
        )
        if self._thread is None:
            try:
                self._write(entry)
            except Exception:
                logger.exception("Audit write failed; entry dropped (action=%s)", action)
            return
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            logger.warning("Audit queue full; dropping entry (action=%s)", action)

    def _write(self, entry: AuditLogEntry) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=entry.id,
                    created_at=entry.created_at,
                    actor_type=entry.actor_type,
                    actor_id=entry.actor_id,
                    workspace_id=entry.workspace_id,
                    action=entry.action,
                    target_type=entry.target_type,
                    target_id=entry.target_id,
                    result=entry.result,
                    status_code=entry.status_code,
                    reason=entry.reason,
                    ip=entry.ip,
                    user_agent=entry.user_agent,
                    origin=entry.origin,
                    metadata_json=json.dumps(entry.metadata, ensure_ascii=False, default=str),
                )
            )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def list_recent(self, limit: int = 100) -> list[AuditLogEntry]:
        """Return up to limit entries, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_logs.select().order_by(_audit_logs.c.created_at.desc()).limit(limit)
            ).fetchall()
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        created_at=row.created_at,
        actor_type=row.actor_type,
        actor_id=row.actor_id,
        workspace_id=row.workspace_id,
        action=row.action,
        target_type=row.target_type,
        target_id=row.target_id,
        result=row.result,
        status_code=row.status_code,
        reason=row.reason,
        ip=row.ip,
        user_agent=row.user_agent,
        origin=row.origin,
        metadata=json.loads(row.metadata_json) if row.metadata_json else {},
    )
