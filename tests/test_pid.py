"""
Unit tests for the PID record: persistence, liveness, stale cleanup.
"""

import json
import os

from host.pid import PIDManager


class TestIsProcessRunning:

    def test_own_process_is_running(self):
        assert PIDManager.is_process_running(os.getpid())

    def test_live_child(self, live_process):
        assert PIDManager.is_process_running(live_process.pid)

    def test_exited_process(self, dead_pid):
        assert not PIDManager.is_process_running(dead_pid)

    def test_nonsense_pids(self):
        assert not PIDManager.is_process_running(0)
        assert not PIDManager.is_process_running(-5)
        assert not PIDManager.is_process_running("123")


class TestPIDRecord:

    def test_save_and_read(self, tmp_path):
        mgr = PIDManager(str(tmp_path / "host.pid"))
        saved = mgr.save_pid_with_url(os.getpid(), "http://203.0.113.5:8080")
        record = mgr.get_pid_info()
        assert record == saved
        assert record.public_url == "http://203.0.113.5:8080"
        assert record.start_time

    def test_save_overwrites(self, tmp_path):
        mgr = PIDManager(str(tmp_path / "host.pid"))
        mgr.save_pid_with_url(111, "http://a:1")
        mgr.save_pid_with_url(os.getpid(), "http://b:2")
        assert mgr.read_pid().public_url == "http://b:2"
        assert not os.path.exists(str(tmp_path / "host.pid.tmp"))

    def test_no_record(self, tmp_path):
        assert PIDManager(str(tmp_path / "host.pid")).get_pid_info() is None

    def test_stale_record_is_purged(self, tmp_path, dead_pid):
        path = tmp_path / "host.pid"
        mgr = PIDManager(str(path))
        mgr.save_pid_with_url(dead_pid, "http://203.0.113.5:8080")
        assert mgr.get_pid_info() is None
        assert not path.exists()

    def test_corrupt_record_is_purged(self, tmp_path):
        path = tmp_path / "host.pid"
        path.write_text("{not json")
        mgr = PIDManager(str(path))
        assert mgr.read_pid() is None
        assert mgr.get_pid_info() is None
        assert not path.exists()

    def test_record_without_pid_is_corrupt(self, tmp_path):
        path = tmp_path / "host.pid"
        path.write_text(json.dumps({"public_url": "http://x:1"}))
        assert PIDManager(str(path)).get_pid_info() is None
        assert not path.exists()

    def test_remove_is_idempotent(self, tmp_path):
        mgr = PIDManager(str(tmp_path / "host.pid"))
        mgr.save_pid_with_url(os.getpid(), "http://x:1")
        mgr.remove_pid()
        mgr.remove_pid()
        mgr.cleanup_stale_pid()
        assert mgr.read_pid() is None

    def test_creates_parent_directory(self, tmp_path):
        mgr = PIDManager(str(tmp_path / "nested" / "home" / "host.pid"))
        mgr.save_pid_with_url(os.getpid(), "http://x:1")
        assert mgr.get_pid_info().pid == os.getpid()
