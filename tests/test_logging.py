"""Unit tests for formbuilder.engine.logging — FileLogger, AsyncLogQueue, LogRetentionManager."""

import gzip
import json
from datetime import date, timedelta

from formbuilder.engine import logging as fb_logging
from formbuilder.engine.logging import (
    DEFAULT_RETENTION,
    OBJECT_TYPE_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    LogRetentionManager,
    log,
    log_form_operation,
    log_security_event,
    log_submission_operation,
    log_system_event,
)


class TestObjectTypeCategories:
    """Verify the category mapping is complete."""

    def test_object_types(self):
        assert set(OBJECT_TYPE_CATEGORIES) == {"forms", "submissions", "settings", "system"}

    def test_every_type_has_execution_and_security(self):
        for cats in OBJECT_TYPE_CATEGORIES.values():
            assert set(cats) == {"execution", "security"}

    def test_retention_defaults(self):
        assert DEFAULT_RETENTION == {"execution": 90, "security": 365}


class TestFileLogger:
    """Test FileLogger file writing."""

    def test_write_creates_file(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write(LogEntry("forms", "execution", {"event": "form_create", "entity_id": "f#0001"}))

        log_dir = tmp_path / "logs" / "forms" / "execution"
        files = list(log_dir.glob("*.jsonl"))
        assert len(files) == 1
        assert json.loads(files[0].read_text().strip())["entity_id"] == "f#0001"

    def test_write_batch_groups_by_file(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write_batch(
            [LogEntry("forms", "execution", {"n": i}) for i in range(3)]
            + [LogEntry("submissions", "security", {"n": 99})]
        )

        forms = list((tmp_path / "logs" / "forms" / "execution").glob("*.jsonl"))
        assert len(forms[0].read_text().strip().split("\n")) == 3
        assert list((tmp_path / "logs" / "submissions" / "security").glob("*.jsonl"))

    def test_query_with_filters(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write_batch([
            LogEntry("forms", "execution", {"event": "form_create", "n": 1}),
            LogEntry("forms", "execution", {"event": "form_publish", "n": 2}),
            LogEntry("forms", "execution", {"event": "form_create", "n": 3}),
        ])
        results = logger.query("forms", "execution", filters={"event": "form_create"})
        assert sorted(r["n"] for r in results) == [1, 3]
        assert logger.query("forms", "security") == []


class TestAsyncLogQueue:
    def test_stop_drains_pending_entries(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path / "logs"))
        queue = AsyncLogQueue(file_logger, flush_interval_ms=10)
        for i in range(5):
            assert queue.push(LogEntry("system", "execution", {"n": i})) is True
        queue.stop()

        files = list((tmp_path / "logs" / "system" / "execution").glob("*.jsonl"))
        assert len(files[0].read_text().strip().split("\n")) == 5
        assert queue.pending_count == 0

    def test_full_queue_drops(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path / "logs")), max_queue_size=1)
        assert queue.push(LogEntry("system", "execution", {})) is True
        assert queue.push(LogEntry("system", "execution", {})) is False
        assert queue.dropped_count == 1


class TestGlobalQueue:
    def test_log_without_queue_is_noop(self):
        assert log(log_system_event("noop")) is False

    def test_init_and_shutdown(self, tmp_path):
        queue = fb_logging.init_logging(log_dir=str(tmp_path / "logs"), flush_interval_ms=10)
        assert fb_logging.get_log_queue() is queue
        assert log(log_system_event("started")) is True
        fb_logging.shutdown_logging()
        assert fb_logging.get_log_queue() is None

        files = list((tmp_path / "logs" / "system" / "execution").glob("*.jsonl"))
        assert json.loads(files[0].read_text().strip())["event"] == "started"


class TestLogRetentionManager:
    """Test retention cleanup."""

    def test_cleanup_empty_dir(self, tmp_path):
        log_dir = tmp_path / "logs"
        log_dir.mkdir()
        assert LogRetentionManager(log_dir=str(log_dir)).cleanup() == {"deleted": 0, "compressed": 0}

    def test_deletes_and_compresses(self, tmp_path):
        FileLogger(log_dir=str(tmp_path / "logs"))
        cat_dir = tmp_path / "logs" / "forms" / "execution"
        today = date(2026, 6, 1)
        old = cat_dir / f"{(today - timedelta(days=120)).isoformat()}.jsonl"
        aging = cat_dir / f"{(today - timedelta(days=10)).isoformat()}.jsonl"
        fresh = cat_dir / f"{today.isoformat()}.jsonl"
        for path in (old, aging, fresh):
            path.write_text('{"event":"form_create"}\n')

        result = LogRetentionManager(log_dir=str(tmp_path / "logs")).cleanup(today=today)

        assert result == {"deleted": 1, "compressed": 1}
        assert not old.exists()
        assert fresh.exists()
        with gzip.open(aging.with_suffix(".jsonl.gz"), "rt", encoding="utf-8") as f:
            assert "form_create" in f.read()


class TestLogBuilders:
    """Test convenience log entry builder functions."""

    def test_log_form_operation(self):
        entry = log_form_operation(
            operation="publish",
            revision_id="fam1#0002",
            form_id="fam1",
            version=2,
            execution_id="exec_001",
            user_id="u1",
            tenant="root",
            locale="en-US",
            status="published",
            fields_changed=["name"],
        )
        assert (entry.object_type, entry.category) == ("forms", "execution")
        assert entry.data["event"] == "form_publish"
        assert entry.data["entity_id"] == "fam1#0002"
        assert entry.data["version"] == 2
        assert entry.data["fields_changed"] == ["name"]

    def test_log_submission_failure(self):
        entry = log_submission_operation(
            operation="create", submission_id="s1", revision_id="fam1#0001",
            success=False, error="boom",
        )
        assert entry.object_type == "submissions"
        assert entry.data["level"] == "ERROR"
        assert entry.data["error"] == "boom"

    def test_log_security_event(self):
        entry = log_security_event(
            event="permission_denied",
            object_type="forms",
            permission="fb.form",
            action="p",
            user_id="u1",
        )
        assert (entry.object_type, entry.category) == ("forms", "security")
        assert entry.data["action"] == "p"

    def test_security_event_unknown_type_goes_to_system(self):
        entry = log_security_event(
            event="x", object_type="widgets", permission="fb.form", action="r", user_id="u1",
        )
        assert entry.object_type == "system"

    def test_log_system_event(self):
        entry = log_system_event("form_builder_started", details={"storage": "memory"})
        assert (entry.object_type, entry.category) == ("system", "execution")
        assert entry.data["details"] == {"storage": "memory"}
