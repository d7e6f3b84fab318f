"""
Unit tests for `stop`: idempotence, ordering, config field preservation.
"""

import threading

from commands.context import HostContext
from commands.stop import stop_host
from host.daemon import DaemonManager

from conftest import PUBLIC_URL


class TestStop:

    def test_not_running_touches_nothing(self, ctx, calls, daemons):
        result = stop_host(ctx)
        assert not result.was_running
        assert calls == []

    def test_stops_then_removes_pid(self, ctx, calls, pids, store,
                                    registered_config, live_process):
        store.save(registered_config.with_process(live_process.pid))
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        del calls[:]

        result = stop_host(ctx)

        assert result.was_running
        assert result.pid == live_process.pid
        assert calls[0] == ("stop_daemon", live_process.pid, 10000, False)
        assert calls.index("remove_pid") > 0
        assert calls[-1] == "save_config"

    def test_clears_only_process_fields(self, ctx, pids, store,
                                        registered_config, live_process):
        store.save(registered_config.with_process(live_process.pid))
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        stop_host(ctx)
        assert store.load() == registered_config

    def test_missing_config_tolerated(self, ctx, calls, pids, live_process):
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        result = stop_host(ctx, timeout_ms=500, force=True)
        assert result.was_running
        assert ("stop_daemon", live_process.pid, 500, True) in calls
        assert "save_config" not in calls
        assert pids.read_pid() is None

    def test_stale_record_self_heals(self, ctx, calls, pids, dead_pid):
        pids.save_pid_with_url(dead_pid, PUBLIC_URL)
        result = stop_host(ctx)
        assert not result.was_running
        assert pids.read_pid() is None
        assert not any(isinstance(c, tuple) and c[0] == "stop_daemon" for c in calls)

    def test_twice_in_a_row(self, ctx, pids, live_process):
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        assert stop_host(ctx).was_running
        assert not stop_host(ctx).was_running


class TestStopRealProcess:

    def test_terminates_live_process(self, store, pids, registered_config,
                                     live_process):
        store.save(registered_config.with_process(live_process.pid))
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        ctx = HostContext(store=store, pids=pids,
                          daemons=DaemonManager(poll_interval=0.05))
        # Reap the child so it does not linger as a zombie
        threading.Thread(target=live_process.wait, daemon=True).start()

        result = stop_host(ctx, timeout_ms=5000)
        assert result.outcome == "graceful"
        assert pids.get_pid_info() is None
        assert store.load().process_pid is None
