"""
Tests for the dead-letter log.
"""

import pytest

from pushagent.agent.deadletter import DeadLetterLog, DeadLetterRecord
from pushagent.agent.jobs import UploadJob
from pushagent.core.exceptions import DeadLetterError


class TestDeadLetterLog:
    def test_empty_log(self, dead_letters):
        assert dead_letters.read() == []
        assert len(dead_letters) == 0

    def test_append_and_read(self, dead_letters):
        job = UploadJob("/store/abc-a", "main", "/store/x-a.drv", attempts=3)

        dead_letters.append(job, "exhausted", "connection refused")

        records = dead_letters.read()
        assert len(records) == 1
        assert records[0].job == job
        assert records[0].reason == "exhausted"
        assert records[0].error == "connection refused"

    def test_append_records_keeps_order(self, dead_letters):
        records = [
            DeadLetterRecord(UploadJob(f"/store/abc-{n}", "main"), "shutdown")
            for n in range(3)
        ]

        dead_letters.append_records(records)

        assert [r.job.store_path for r in dead_letters.read()] == [
            "/store/abc-0",
            "/store/abc-1",
            "/store/abc-2",
        ]

    def test_drain_truncates(self, dead_letters):
        dead_letters.append(UploadJob("/store/abc-a", "main"), "no_token")

        drained = dead_letters.drain()

        assert [r.reason for r in drained] == ["no_token"]
        assert dead_letters.read() == []

    def test_malformed_lines_skipped(self, dead_letters):
        dead_letters.append(UploadJob("/store/abc-a", "main"), "dropped")
        with open(dead_letters.path, "a") as f:
            f.write("not json\n{\"reason\": \"missing job fields\"}\n")

        assert [r.reason for r in dead_letters.read()] == ["dropped"]

    def test_shared_between_instances(self, dead_letters, lock_manager):
        other = DeadLetterLog(dead_letters.path, lock_manager)
        dead_letters.append(UploadJob("/store/abc-a", "main"), "dropped")

        assert len(other) == 1

    def test_unwritable_path(self, tmp_path, lock_manager):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        log = DeadLetterLog(blocker / "dead-letter.jsonl", lock_manager)

        with pytest.raises(DeadLetterError):
            log.append(UploadJob("/store/abc-a", "main"), "dropped")
