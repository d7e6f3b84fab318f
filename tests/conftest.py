"""
Shared pytest fixtures for llmhost unit tests.
"""

import os
import subprocess
import sys
from collections import deque
from types import SimpleNamespace

import pytest

# Ensure project root is on sys.path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from commands.context import HostContext
from economics.registrar import Balances, RegistrationStatus, model_id, to_wei
from economics.requirements import check_registration_requirements
from host.host_config import ConfigStore, HostConfig
from host.pid import PIDManager

HOST_ADDRESS = "0x" + "ab" * 20
PUBLIC_URL = "http://203.0.113.5:8080"
MODEL = "TheBloke/Llama-2-7B-GGUF:llama-2-7b.Q4_K_M.gguf"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeRegistrar:
    """In-memory NodeRegistry + token. Records every call in .calls."""

    def __init__(self, registered: bool = False, staked_tokens: float = 0,
                 eth: float = 1.0, tokens: float = 5000):
        self.address = HOST_ADDRESS
        self.registered = registered
        self.active = registered
        self.api_url = PUBLIC_URL if registered else ""
        self.staked = to_wei(staked_tokens)
        self.models = []
        self.balances = Balances(eth=to_wei(eth), stake_token=to_wei(tokens))
        self.allowance = 0
        self.calls = []
        self.register_error = None
        self.unregister_error = None
        self.keep_active_after_unregister = False

    def check_registration_status(self, address=None):
        self.calls.append("check_registration_status")
        if not self.registered:
            return RegistrationStatus(is_registered=False,
                                      host_address=address or self.address)
        return RegistrationStatus(
            is_registered=True,
            host_address=self.address,
            api_url=self.api_url,
            staked_amount=self.staked,
            models=list(self.models),
            is_active=self.active,
        )

    def validate_registration_requirements(self, stake_amount):
        self.calls.append("validate_registration_requirements")
        return check_registration_requirements(self.balances, stake_amount)

    def register_host(self, request):
        self.calls.append("register_host")
        if self.register_error is not None:
            raise self.register_error
        self.registered = True
        self.active = True
        self.api_url = request.api_url
        self.staked += request.stake_amount
        self.models = [model_id(m) for m in request.models]
        return "0xregistertx"

    def unregister_host(self):
        self.calls.append("unregister_host")
        if self.unregister_error is not None:
            raise self.unregister_error
        if not self.keep_active_after_unregister:
            self.registered = False
            self.active = False
        return "0xunregistertx"

    def check_allowance(self, amount):
        self.calls.append("check_allowance")
        return self.allowance >= amount

    def approve_token(self, amount):
        self.calls.append("approve_token")
        self.allowance = amount
        return "0xapprovetx"

    def add_stake(self, amount):
        self.calls.append("add_stake")
        self.staked += amount
        return "0xstaketx"

    def update_api_url(self, url):
        self.calls.append("update_api_url")
        self.api_url = url
        return "0xurltx"

    def update_supported_models(self, models):
        self.calls.append("update_supported_models")
        self.models = [model_id(m) for m in models]
        return "0xmodelstx"

    def set_model_pricing(self, spec, native, stable):
        self.calls.append(("set_model_pricing", spec, native, stable))
        return "0xpricetx"

    def update_pricing(self, price):
        self.calls.append(("update_pricing", price))
        return "0xpricingtx"

    def get_balances(self, address=None):
        self.calls.append("get_balances")
        return Balances(eth=self.balances.eth,
                        stake_token=self.balances.stake_token,
                        staked=self.staked)

    def get_host_info(self, address=None):
        return self.check_registration_status(address)


class FakeSupervisor:
    """Pretends to spawn; the handle's pid is this test process (always alive)."""

    def __init__(self, calls=None):
        self.calls = calls if calls is not None else []
        self.spawned = []
        self.stopped = []
        self.spawn_error = None
        self.stop_error = None
        self.executable = "/usr/local/bin/fabstir-llm-node"

    def find_executable(self):
        return self.executable

    def spawn_inference_server(self, cfg, daemon=False):
        self.calls.append("spawn")
        if self.spawn_error is not None:
            raise self.spawn_error
        handle = SimpleNamespace(pid=os.getpid(), config=cfg, daemon=daemon,
                                 status="running", logs=deque())
        self.spawned.append(handle)
        return handle

    def stop_inference_server(self, handle, force=False):
        self.calls.append(("stop", force))
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped.append((handle, force))
        handle.status = "stopped"


class FakeDaemons:
    def __init__(self, calls=None, outcome="graceful"):
        self.calls = calls if calls is not None else []
        self.outcome = outcome

    def stop_daemon(self, pid, timeout_ms=10000, force=False):
        self.calls.append(("stop_daemon", pid, timeout_ms, force))
        return self.outcome


class RecordingPIDManager(PIDManager):
    """PIDManager that logs mutations into a shared call list."""

    def __init__(self, pid_path, calls):
        super().__init__(pid_path)
        self.calls = calls

    def remove_pid(self):
        self.calls.append("remove_pid")
        super().remove_pid()

    def cleanup_stale_pid(self):
        self.calls.append("cleanup_stale_pid")
        super().cleanup_stale_pid()

    def save_pid_with_url(self, pid, public_url):
        self.calls.append("save_pid_with_url")
        return super().save_pid_with_url(pid, public_url)


class RecordingConfigStore(ConfigStore):
    def __init__(self, path, calls):
        super().__init__(path)
        self.calls = calls

    def save(self, cfg, backup=True):
        self.calls.append("save_config")
        super().save(cfg, backup=backup)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def calls():
    """Shared, ordered log of side effects across fakes."""
    return []


@pytest.fixture
def store(tmp_path, calls):
    return RecordingConfigStore(str(tmp_path / "config.json"), calls)


@pytest.fixture
def pids(tmp_path, calls):
    return RecordingPIDManager(str(tmp_path / "host.pid"), calls)


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def supervisor(calls):
    return FakeSupervisor(calls)


@pytest.fixture
def daemons(calls):
    return FakeDaemons(calls)


@pytest.fixture
def busy_ports():
    """Ports the ctx fixture reports as taken."""
    return set()


@pytest.fixture
def ctx(store, pids, supervisor, daemons, registrar, busy_ports):
    return HostContext(store=store, pids=pids, supervisor=supervisor,
                       daemons=daemons, registrar=registrar,
                       rpc_url="http://rpc.test",
                       port_available=lambda port: port not in busy_ports)


@pytest.fixture
def registered_config():
    return HostConfig(
        wallet_address=HOST_ADDRESS,
        rpc_url="http://rpc.test",
        inference_port=8080,
        public_url=PUBLIC_URL,
        models=[MODEL],
        price_per_token=2500,
        min_job_deposit=0.5,
    )


@pytest.fixture
def live_process():
    """A real, long-running child process. Killed on teardown."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    yield proc
    if proc.poll() is None:
        proc.kill()
    proc.wait()


@pytest.fixture
def dead_pid():
    """Pid of a process that has already exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid
