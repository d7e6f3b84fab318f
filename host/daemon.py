"""
Daemon Manager — stops a detached inference process knowing only its pid.

Used by `stop` and `unregister`, which run in a different invocation from
the one that spawned the process and so have no ProcessHandle.
"""

import logging
import os
import signal
import time

import config as global_config
from host.pid import PIDManager

logger = logging.getLogger("llmhost.daemon")

GRACEFUL = "graceful"
FORCED = "forced"
NOT_RUNNING = "not_running"

# After SIGKILL, how long to wait for the kernel to reap the process
KILL_SETTLE_SECONDS = 2.0


class DaemonManager:
    """Poll-then-escalate termination of a pid."""

    def __init__(self, poll_interval: float = global_config.STOP_POLL_INTERVAL_SECONDS):
        self.poll_interval = poll_interval

    @staticmethod
    def _send(pid: int, sig: int) -> bool:
        """Deliver sig; False if the process is already gone."""
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        return True

    def _wait_gone(self, pid: int, seconds: float) -> bool:
        deadline = time.monotonic() + seconds
        while time.monotonic() < deadline:
            if not PIDManager.is_process_running(pid):
                return True
            time.sleep(self.poll_interval)
        return not PIDManager.is_process_running(pid)

    def stop_daemon(self, pid: int,
                    timeout_ms: int = global_config.STOP_TIMEOUT_MS,
                    force: bool = False) -> str:
        """Terminate pid. Returns "graceful", "forced" or "not_running".

        force=True sends SIGKILL straight away. Otherwise SIGTERM is sent and
        liveness is polled until timeout_ms; a process still alive then is
        killed. Never raises for a process that has already exited.
        """
        if not PIDManager.is_process_running(pid):
            logger.info("pid %d is not running", pid)
            return NOT_RUNNING

        if not force:
            if not self._send(pid, signal.SIGTERM):
                return NOT_RUNNING
            logger.info("Sent SIGTERM to pid %d, waiting up to %d ms",
                        pid, timeout_ms)
            if self._wait_gone(pid, timeout_ms / 1000):
                return GRACEFUL
            logger.warning("pid %d still alive after %d ms, sending SIGKILL",
                           pid, timeout_ms)

        if not self._send(pid, signal.SIGKILL):
            return GRACEFUL if not force else NOT_RUNNING
        if not self._wait_gone(pid, KILL_SETTLE_SECONDS):
            logger.error("pid %d survived SIGKILL", pid)
        return FORCED
