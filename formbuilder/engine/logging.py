"""
Form Builder Operation Logging — Structured JSON file-based logging with async queue.

Implements:
- FileLogger: Per-entity-type, per-category log files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush (100ms / 50 entries)
- Log entry builders for form, submission, security and system events
- LogRetentionManager: retention-aware cleanup and gzip compression

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("formbuilder.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "forms": ["execution", "security"],
    "submissions": ["execution", "security"],
    "settings": ["execution", "security"],
    "system": ["execution", "security"],
}

# Retention defaults (days)
DEFAULT_RETENTION = {
    "execution": 90,
    "security": 365,
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.
    Files rotate daily. Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create the full directory tree for all object types and categories."""
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        file_path = self._resolve_path(entry.object_type, entry.category)

        with self._file_locks[str(file_path)]:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(entry.to_json())
                f.write("\n")

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            file_path = str(self._resolve_path(entry.object_type, entry.category))
            grouped[file_path].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        """Resolve the log file path for today's date."""
        today = date.today().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Query log entries for a given object_type/category.

        Args:
            object_type: The object type folder (e.g. "forms").
            category: The category folder (e.g. "execution").
            start_date: Earliest date to include (defaults to 7 days ago).
            end_date: Latest date to include (defaults to today).
            filters: Only entries matching ALL key/value pairs are returned.
            limit: Max number of entries to return.

        Returns:
            List of parsed log-entry dicts, newest first.
        """
        if end_date is None:
            end_date = date.today()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        log_base = self._log_dir / object_type / category
        if not log_base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = end_date
        while current >= start_date and len(results) < limit:
            file_path = log_base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                results.extend(_read_jsonl(file_path, filters, limit - len(results)))
            gz_path = file_path.with_suffix(".jsonl.gz")
            if gz_path.exists() and len(results) < limit:
                results.extend(_read_jsonl(gz_path, filters, limit - len(results)))
            current -= timedelta(days=1)

        results.reverse()
        return results[:limit]


def _read_jsonl(
    path: Path,
    filters: Optional[Dict[str, Any]],
    remaining: int,
) -> List[Dict[str, Any]]:
    """Read up to *remaining* matching entries from a .jsonl or .jsonl.gz file."""
    opener = gzip.open if path.suffix == ".gz" else open
    entries: List[Dict[str, Any]] = []
    try:
        with opener(path, "rt", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if filters and not all(data.get(k) == v for k, v in filters.items()):
                    continue
                entries.append(data)
                if len(entries) >= remaining:
                    break
    except OSError as exc:
        logger.warning("Could not read log file %s: %s", path, exc)
    return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. The flush thread writes to the
    FileLogger every flush_interval_ms OR when flush_batch_size entries
    accumulate, whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        """Start the background flush thread."""
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="formbuilder-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """
        Push a log entry to the queue. Non-blocking.

        Returns:
            True if queued, False if dropped (queue full).
        """
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        """Background thread: flush on interval or batch size."""
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        """Collect up to flush_batch_size entries from the queue."""
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
                continue

        return batch

    def _drain(self) -> None:
        """Drain all remaining entries from the queue."""
        batch: List[LogEntry] = []
        while not self._queue.empty():
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    entity_id: Optional[str],
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    tenant: Optional[str] = None,
    locale: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "entity_id": entity_id,
    }
    if execution_id:
        entry["execution_id"] = execution_id
    if user_id is not None:
        entry["user_id"] = user_id
    if tenant:
        entry["tenant"] = tenant
    if locale:
        entry["locale"] = locale
    entry.update(extra)
    return entry


def log_form_operation(
    operation: str,
    revision_id: str,
    form_id: str,
    version: int,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    tenant: Optional[str] = None,
    locale: Optional[str] = None,
    status: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
) -> LogEntry:
    """Build a form revision operation log entry (create/update/publish/...)."""
    data = _base_entry(
        event=f"form_{operation}",
        level="INFO",
        entity_id=revision_id,
        execution_id=execution_id,
        user_id=user_id,
        tenant=tenant,
        locale=locale,
        form_id=form_id,
        version=version,
        operation=operation,
    )
    if status:
        data["status"] = status
    if fields_changed:
        data["fields_changed"] = fields_changed
    return LogEntry("forms", "execution", data)


def log_submission_operation(
    operation: str,
    submission_id: str,
    revision_id: str,
    execution_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    tenant: Optional[str] = None,
    locale: Optional[str] = None,
    success: bool = True,
    error: Optional[str] = None,
) -> LogEntry:
    """Build a submission operation log entry."""
    data = _base_entry(
        event=f"submission_{operation}",
        level="INFO" if success else "ERROR",
        entity_id=submission_id,
        execution_id=execution_id,
        user_id=user_id,
        tenant=tenant,
        locale=locale,
        revision_id=revision_id,
        operation=operation,
        success=success,
    )
    if error:
        data["error"] = error
    return LogEntry("submissions", "execution", data)


def log_security_event(
    event: str,
    object_type: str,
    permission: str,
    action: str,
    user_id: Any,
    entity_id: Optional[str] = None,
    execution_id: Optional[str] = None,
    tenant: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event log entry (permission denied, captcha failure)."""
    data = _base_entry(
        event=event,
        level=level,
        entity_id=entity_id,
        execution_id=execution_id,
        user_id=user_id,
        tenant=tenant,
        permission=permission,
        action=action,
    )
    target = object_type if object_type in OBJECT_TYPE_CATEGORIES else "system"
    return LogEntry(target, "security", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, invariant breach)."""
    data = _base_entry(event=event, level=level, entity_id="system")
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Log Cleanup / Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """
    Cleans up log files older than configured retention periods.
    Compresses files older than compress_after_days with gzip.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = retention_days or DEFAULT_RETENTION.copy()
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """
        Run retention cleanup across all log directories.

        Returns:
            Dict with counts: {"deleted": N, "compressed": M}
        """
        deleted = 0
        compressed = 0
        today = today or date.today()

        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                cat_dir = self._log_dir / obj_type / cat
                if not cat_dir.exists():
                    continue

                retention = self._retention.get(cat, 90)

                for file_path in cat_dir.iterdir():
                    if not file_path.is_file():
                        continue

                    file_date = self._parse_file_date(file_path)
                    if file_date is None:
                        continue

                    age_days = (today - file_date).days

                    if age_days > retention:
                        file_path.unlink()
                        deleted += 1
                        continue

                    if age_days > self._compress_after and file_path.suffix == ".jsonl":
                        self._compress_file(file_path)
                        compressed += 1

        result = {"deleted": deleted, "compressed": compressed}
        logger.info(f"Log cleanup: {result}")
        return result

    @staticmethod
    def _parse_file_date(file_path: Path) -> Optional[date]:
        """Extract date from filename like 2026-02-12.jsonl or 2026-02-12.jsonl.gz."""
        date_str = file_path.name.split(".")[0]
        try:
            return date.fromisoformat(date_str)
        except ValueError:
            return None

    @staticmethod
    def _compress_file(file_path: Path) -> None:
        """Gzip a log file and remove the original."""
        gz_path = file_path.with_suffix(file_path.suffix + ".gz")
        try:
            with open(file_path, "rb") as f_in:
                with gzip.open(gz_path, "wb") as f_out:
                    shutil.copyfileobj(f_in, f_out)
            file_path.unlink()
        except OSError as e:
            logger.error(f"Failed to compress {file_path}: {e}")
            if gz_path.exists():
                gz_path.unlink()


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize and start the global async log queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    """Get the global async log queue."""
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        # Operation logging is optional; stdlib logging still carries the event
        logger.debug(f"Log queue not initialized — {entry.data.get('event')} not persisted")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
