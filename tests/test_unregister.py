"""
Unit tests for `unregister`.
"""

import pytest

from commands.unregister import unregister
from economics.registrar import to_wei
from host.errors import ChainTransactionError, ErrorCode, HostError

from conftest import FakeRegistrar, PUBLIC_URL


@pytest.fixture
def registrar():
    return FakeRegistrar(registered=True, staked_tokens=1000)


class TestUnregister:

    def test_not_registered_is_noop(self, ctx, registrar, calls):
        registrar.registered = False
        result = unregister(ctx)
        assert not result.was_registered
        assert "unregister_host" not in registrar.calls
        assert calls == []

    def test_unregisters_and_stops(self, ctx, registrar, calls, pids, store,
                                   registered_config, live_process):
        store.save(registered_config.with_process(live_process.pid))
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)

        result = unregister(ctx)

        assert result.was_registered
        assert result.transaction_hash == "0xunregistertx"
        assert result.staked_amount == to_wei(1000)
        assert result.confirmed_inactive
        assert result.stop.was_running
        assert ("stop_daemon", live_process.pid, 10000, False) in calls
        assert pids.read_pid() is None
        assert store.load() == registered_config

    def test_status_requeried_after_tx(self, ctx, registrar):
        unregister(ctx)
        idx = registrar.calls.index("unregister_host")
        assert "check_registration_status" in registrar.calls[idx + 1:]

    def test_stake_announced_before_tx(self, ctx, registrar):
        seen = []

        def announce(status):
            seen.append((status.staked_amount, "unregister_host" in registrar.calls))

        unregister(ctx, announce=announce)
        assert seen == [(to_wei(1000), False)]

    def test_not_registered_announces_nothing(self, ctx, registrar):
        registrar.registered = False
        seen = []
        unregister(ctx, announce=seen.append)
        assert seen == []


    def test_no_running_node(self, ctx, registrar, calls):
        result = unregister(ctx)
        assert result.was_registered
        assert not result.stop.was_running
        assert not any(isinstance(c, tuple) for c in calls)

    def test_still_active_is_reported(self, ctx, registrar):
        registrar.keep_active_after_unregister = True
        assert not unregister(ctx).confirmed_inactive

    def test_chain_error_keeps_node_running(self, ctx, registrar, calls, pids,
                                            live_process):
        pids.save_pid_with_url(live_process.pid, PUBLIC_URL)
        registrar.unregister_error = ChainTransactionError(
            "unregisterNode failed", ErrorCode.UNREGISTRATION_FAILED)
        with pytest.raises(ChainTransactionError):
            unregister(ctx)
        assert pids.read_pid().pid == live_process.pid
        assert not any(isinstance(c, tuple) for c in calls)

    def test_unexpected_error_wrapped(self, ctx, registrar):
        cause = RuntimeError("boom")
        registrar.unregister_error = cause
        with pytest.raises(HostError) as exc:
            unregister(ctx)
        assert exc.value.code == ErrorCode.UNREGISTRATION_FAILED
        assert exc.value.__cause__ is cause
