"""Audit log of admin actions, written to a file and a Redis-like store."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from os import PathLike
from typing import Any

RETENTION = timedelta(days=90)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass
class AuditEntry:
    """One audited action."""

    action: str = ""
    resource: str = ""
    user_ip: str = ""
    method: str = ""
    path: str = ""
    body: str = ""
    success: bool = False
    error: str = ""
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; empty body and error are left out."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "action": self.action,
            "resource": self.resource,
            "user_ip": self.user_ip,
            "method": self.method,
            "path": self.path,
        }
        if self.body:
            data["body"] = self.body
        data["success"] = self.success
        if self.error:
            data["error"] = self.error
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        known = asdict(cls())
        return cls(**{k: v for k, v in data.items() if k in known})


class AuditLogger:
    """Appends audit entries to a JSON-lines file and/or a store."""

    def __init__(
        self,
        log_path: str | PathLike | None = None,
        store: Any = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._file = None
        if log_path:
            try:
                self._file = open(log_path, "a", encoding="utf-8")
            except OSError as exc:
                raise OSError(f"failed to open audit log: {exc}") from exc

    def __enter__(self) -> AuditLogger:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def log(self, entry: AuditEntry) -> AuditEntry:
        """Stamp the entry with the current UTC time and record it."""
        now = self._clock()
        stamped = replace(
            entry, timestamp=now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        )
        line = stamped.to_json()
        with self._lock:
            if self._file is not None:
                self._file.write(line + "\n")
                self._file.flush()
            if self.store is not None:
                key = f"audit:{now.strftime('%Y-%m-%d')}:{stamped.action}"
                self.store.rpush(key, line)
                self.store.expire(key, int(RETENTION.total_seconds()))
        return stamped

    def close(self) -> None:
        """Close the log file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def get_entries(self, date: str, action: str = "", limit: int = 100) -> list[AuditEntry]:
        """Entries for a YYYY-MM-DD date, optionally one action; last limit per action."""
        if self.store is None:
            raise RuntimeError("store not configured for audit log queries")
        if action:
            return self._entries_from_key(f"audit:{date}:{action}", limit)
        entries: list[AuditEntry] = []
        for key in sorted(_text(k) for k in self.store.keys(f"audit:{date}:*")):
            entries.extend(self._entries_from_key(key, limit))
        return entries

    def _entries_from_key(self, key: str, limit: int) -> list[AuditEntry]:
        start = 0
        if limit > 0:
            length = int(self.store.llen(key))
            if length > limit:
                start = length - limit
        entries = []
        for raw in self.store.lrange(key, start, -1):
            try:
                data = json.loads(_text(raw))
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                entries.append(AuditEntry.from_dict(data))
        return entries

    def record_request(
        self,
        method: str,
        route: str,
        path: str,
        client_ip: str,
        status: int,
        error: str = "",
    ) -> AuditEntry | None:
        """Audit a finished admin request; GET requests are not recorded."""
        if method == "GET":
            return None
        success = status < 400
        entry = AuditEntry(
            action=f"{method}_{route}",
            resource=route,
            user_ip=client_ip,
            method=method,
            path=path,
            success=success,
            error="" if success else error,
        )
        return self.log(entry)