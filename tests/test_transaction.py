"""Tests for transaction logging."""

import json
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

import backup_courier.transaction as txn_module
from backup_courier.transaction import (
    TransactionContext,
    get_transaction_log,
    get_transaction_stats,
    log_transaction,
    read_transaction_log,
    set_transaction_log,
)


def read_records(path):
    return [json.loads(line) for line in Path(path).read_text().strip().split("\n")]


class TestSetTransactionLog:
    """Tests for set_transaction_log function."""

    def test_set_path(self, tmp_path):
        """Test setting transaction log path."""
        log_path = tmp_path / "transactions.log"
        set_transaction_log(log_path)

        log_transaction(action="transfer", status="completed")

        assert log_path.exists()
        assert get_transaction_log() == log_path

        set_transaction_log(None)

    def test_set_none_disables_logging(self, tmp_path):
        """Test setting None disables logging."""
        log_path = tmp_path / "transactions.log"
        set_transaction_log(log_path)
        set_transaction_log(None)

        log_transaction(action="transfer", status="completed")

        assert not log_path.exists()
        assert get_transaction_log() is None

    def test_creates_parent_directories(self, tmp_path):
        """Test creates parent directories if needed."""
        log_path = tmp_path / "deep" / "nested" / "transactions.log"
        set_transaction_log(log_path)

        assert log_path.parent.exists()

        set_transaction_log(None)

    def test_accepts_string_path(self, tmp_path):
        """Test accepts string path."""
        log_path = str(tmp_path / "transactions.log")
        set_transaction_log(log_path)

        log_transaction(action="transfer", status="completed")

        assert Path(log_path).exists()

        set_transaction_log(None)


class TestLogTransaction:
    """Tests for log_transaction function."""

    def test_logs_basic_transaction(self, journal):
        """Test logging a basic transaction."""
        log_transaction(action="upload", status="completed")

        [record] = read_records(journal)
        assert record["action"] == "upload"
        assert record["status"] == "completed"
        assert "timestamp" in record
        assert "pid" in record

    def test_logs_all_fields(self, journal):
        """Test logging transaction with all optional fields."""
        log_transaction(
            action="transfer",
            status="completed",
            source="/var/wordpress_backups/backup_t1_example_com/site.zip",
            task_id="task-1",
            artifact="site.zip",
            parts=3,
            size_bytes=2500,
            duration_seconds=15.5,
            error=None,
            details={"split": True},
        )

        [record] = read_records(journal)
        assert record["source"].endswith("site.zip")
        assert record["task_id"] == "task-1"
        assert record["artifact"] == "site.zip"
        assert record["parts"] == 3
        assert record["size_bytes"] == 2500
        assert record["duration_seconds"] == 15.5
        assert record["details"] == {"split": True}
        assert "error" not in record

    def test_logs_error_field(self, journal):
        """Test logging transaction with error."""
        log_transaction(action="upload", status="failed", error="Connection refused")

        [record] = read_records(journal)
        assert record["error"] == "Connection refused"

    def test_appends_to_log(self, journal):
        """Test transactions are appended to log."""
        for action in ("transfer", "upload", "cleanup"):
            log_transaction(action=action, status="completed")

        assert [r["action"] for r in read_records(journal)] == [
            "transfer",
            "upload",
            "cleanup",
        ]

    def test_does_nothing_when_disabled(self):
        """Test does nothing when logging is disabled."""
        set_transaction_log(None)
        log_transaction(action="transfer", status="completed")

    def test_rounds_duration(self, journal):
        """Test duration is rounded to 3 decimal places."""
        log_transaction(action="transfer", status="completed", duration_seconds=1.23456789)

        assert read_records(journal)[0]["duration_seconds"] == 1.235

    @patch("builtins.open", side_effect=OSError("Disk full"))
    def test_handles_write_error(self, mock_open, tmp_path):
        """Test handles write errors gracefully."""
        txn_module._transaction_log_path = tmp_path / "transactions.log"

        log_transaction(action="transfer", status="completed")

        set_transaction_log(None)


class TestTransactionContext:
    """Tests for TransactionContext context manager."""

    def test_logs_start_and_completion(self, journal):
        """Test logs started and completed transactions."""
        with TransactionContext("transfer", source="site.zip", task_id="task-1"):
            pass

        started, completed = read_records(journal)
        assert started["status"] == "started"
        assert started["source"] == "site.zip"
        assert started["task_id"] == "task-1"
        assert completed["status"] == "completed"
        assert "duration_seconds" in completed

    def test_logs_failure_on_exception(self, journal):
        """Test logs failed status when exception occurs."""
        with pytest.raises(ValueError):
            with TransactionContext("reassemble"):
                raise ValueError("Something went wrong")

        failed = read_records(journal)[1]
        assert failed["status"] == "failed"
        assert "Something went wrong" in failed["error"]

    def test_setters(self, journal):
        """Test values set inside the block end up in the final record."""
        with TransactionContext("reassemble") as tx:
            tx.set_task_id("task-9")
            tx.set_artifact("https://files.example.com/temp/job/site.zip")
            tx.set_parts(3)
            tx.set_size(2500)
            tx.add_detail("job", "abc")

        completed = read_records(journal)[1]
        assert completed["task_id"] == "task-9"
        assert completed["artifact"].endswith("/site.zip")
        assert completed["parts"] == 3
        assert completed["size_bytes"] == 2500
        assert completed["details"] == {"job": "abc"}

    def test_fail_method(self, journal):
        """Test fail() records the message without changing the status."""
        with TransactionContext("transfer") as tx:
            tx.fail("Manual failure")

        completed = read_records(journal)[1]
        assert completed["status"] == "completed"
        assert completed["error"] == "Manual failure"

    def test_measures_duration(self, journal):
        """Test duration is measured."""
        with TransactionContext("transfer"):
            time.sleep(0.1)

        assert read_records(journal)[1]["duration_seconds"] >= 0.1

    def test_returns_self_from_enter(self, journal):
        """Test __enter__ returns self."""
        ctx = TransactionContext("transfer")
        assert ctx.__enter__() is ctx
        assert ctx.__exit__(None, None, None) is False


class TestReadTransactionLog:
    """Tests for read_transaction_log function."""

    def test_reads_nonexistent_log(self, tmp_path):
        """Test reading nonexistent log returns empty list."""
        assert read_transaction_log(tmp_path / "nonexistent.log") == []

    def test_most_recent_first(self, journal):
        """Test records are returned newest first."""
        log_transaction(action="transfer", status="started")
        log_transaction(action="transfer", status="completed")

        result = read_transaction_log(journal)

        assert [r["status"] for r in result] == ["completed", "started"]

    def test_limit_and_filters(self, journal):
        """Test limit, action and status filters."""
        for i in range(5):
            log_transaction(action="upload", status="completed", source=f"p{i}")
        log_transaction(action="upload", status="failed", source="p5")
        log_transaction(action="transfer", status="completed")

        assert read_transaction_log(journal, limit=2)[0]["action"] == "transfer"
        assert len(read_transaction_log(journal, action_filter="upload")) == 6
        failed = read_transaction_log(journal, status_filter="failed")
        assert [r["source"] for r in failed] == ["p5"]

    def test_uses_current_log_path(self, journal):
        """Test uses current log path when path not specified."""
        log_transaction(action="transfer", status="completed")
        assert len(read_transaction_log()) == 1

    def test_skips_invalid_lines(self, tmp_path):
        """Test skips invalid JSON and empty lines."""
        log_path = tmp_path / "transactions.log"
        log_path.write_text(
            '{"action": "upload", "status": "completed"}\n'
            "not valid json\n"
            "\n"
            '{"action": "transfer", "status": "completed"}\n'
        )

        assert len(read_transaction_log(log_path)) == 2


class TestGetTransactionStats:
    """Tests for get_transaction_stats function."""

    def test_empty_log_stats(self, tmp_path):
        """Test stats for empty log."""
        log_path = tmp_path / "empty.log"
        log_path.touch()

        stats = get_transaction_stats(log_path)

        assert stats["total_records"] == 0
        for key in ("transfers", "uploads", "reassemblies", "cleanups"):
            assert stats[key] == {"completed": 0, "failed": 0}
        assert stats["timed_out"] == 0
        assert stats["total_bytes_transferred"] == 0

    def test_counts(self, journal):
        """Test counting records by action and status."""
        log_transaction(action="transfer", status="completed", size_bytes=1000)
        log_transaction(action="transfer", status="completed", size_bytes=2000)
        log_transaction(action="transfer", status="failed", size_bytes=500)
        log_transaction(action="transfer", status="timed_out")
        log_transaction(action="upload", status="completed", size_bytes=900)
        log_transaction(action="reassemble", status="failed")
        log_transaction(action="cleanup", status="completed")

        stats = get_transaction_stats(journal)

        assert stats["total_records"] == 7
        assert stats["transfers"] == {"completed": 2, "failed": 1}
        assert stats["uploads"] == {"completed": 1, "failed": 0}
        assert stats["reassemblies"] == {"completed": 0, "failed": 1}
        assert stats["cleanups"] == {"completed": 1, "failed": 0}
        assert stats["timed_out"] == 1
        assert stats["total_bytes_transferred"] == 3000


class TestThreadSafety:
    """Tests for thread safety of transaction logging."""

    def test_concurrent_logging(self, journal):
        """Test concurrent logging from multiple threads."""
        num_threads = 8
        per_thread = 50

        def worker(n):
            for i in range(per_thread):
                log_transaction(action="upload", status="completed", source=f"{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(num_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = read_records(journal)
        assert len(records) == num_threads * per_thread
        assert len({r["source"] for r in records}) == num_threads * per_thread
