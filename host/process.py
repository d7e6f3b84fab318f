"""
Process Supervisor — spawns and stops the inference-server binary.

The binary is configured through environment variables (API_PORT,
MODEL_PATH, RUST_LOG, ...), not CLI arguments. Spawning returns as soon as
the OS has created the child; readiness is a separate concern handled by
network/probe.py.

Two output modes:
  daemon      stdout/stderr appended to <home>/logs/node.log, so the child
              keeps running after the CLI exits
  attached    stdout/stderr piped into ProcessHandle.logs (bounded) and
              forwarded to any registered listeners (foreground mode)
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import config as global_config
from host.errors import ErrorCode, ProcessError

logger = logging.getLogger("llmhost.process")

# Seconds the reader threads get to flush remaining output after exit
READER_DRAIN_SECONDS = 2.0


@dataclass
class ProcessConfig:
    """What the inference server is started with."""
    port: int
    host: str = global_config.DEFAULT_BIND_HOST
    public_url: str = ""
    models: list = field(default_factory=list)
    log_level: str = global_config.DEFAULT_LOG_LEVEL
    env: dict = field(default_factory=dict)
    working_dir: Optional[str] = None
    max_log_lines: int = global_config.MAX_LOG_LINES


@dataclass
class ProcessHandle:
    """A spawned inference server, alive for the duration of one command."""
    pid: int
    process: subprocess.Popen
    config: ProcessConfig
    status: str = "starting"
    start_time: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc))
    logs: deque = field(default_factory=deque)
    log_path: Optional[str] = None
    listeners: list = field(default_factory=list)
    readers: list = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


def model_filename(model_spec: str) -> str:
    """'repo:file.gguf' -> 'file.gguf'; bare names pass through."""
    if ":" in model_spec:
        return model_spec.split(":", 1)[1]
    return model_spec


class ProcessSupervisor:
    """Starts/stops the inference-server binary."""

    def __init__(self, executable_path: Optional[str] = None,
                 base_args: Optional[list] = None,
                 log_dir: Optional[str] = None,
                 graceful_timeout: float = global_config.STOP_TIMEOUT_MS / 1000):
        self._executable_path = executable_path
        self.base_args = list(base_args or [])
        self.log_dir = log_dir or os.path.join(
            global_config.LLMHOST_HOME, global_config.LOG_DIRNAME)
        self.graceful_timeout = graceful_timeout

    # ------------------------------------------------------------------
    # Binary discovery
    # ------------------------------------------------------------------

    def candidate_paths(self) -> list[str]:
        name = global_config.NODE_BINARY_NAME
        candidates = []
        if global_config.NODE_BINARY_PATH:
            candidates.append(global_config.NODE_BINARY_PATH)
        on_path = shutil.which(name)
        if on_path:
            candidates.append(on_path)
        candidates += [
            f"/usr/local/bin/{name}",
            f"/usr/bin/{name}",
            os.path.join(os.path.expanduser("~"), ".cargo", "bin", name),
            os.path.join(os.getcwd(), name),
        ]
        return candidates

    def find_executable(self) -> Optional[str]:
        """Resolved install path of the inference binary, or None."""
        if self._executable_path:
            return self._executable_path
        for path in self.candidate_paths():
            if os.path.isfile(path) and os.access(path, os.X_OK):
                self._executable_path = path
                return path
        return None

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    def build_environment(self, cfg: ProcessConfig) -> dict:
        """Child environment: ours, plus the node's settings, plus cfg.env."""
        model_file = model_filename(cfg.models[0]) if cfg.models else ""
        node_env = {
            "API_PORT": str(cfg.port),
            "API_HOST": cfg.host,
            "MODEL_PATH": f"./models/{model_file}" if model_file else "",
            "P2P_PORT": global_config.P2P_PORT,
            "RUST_LOG": cfg.log_level,
            "CHAIN_ID": str(global_config.CHAIN_ID),
            "HOST_PRIVATE_KEY": os.environ.get("HOST_PRIVATE_KEY", ""),
            "CONTRACT_NODE_REGISTRY": global_config.NODE_REGISTRY_ADDRESS,
            "RPC_URL": global_config.RPC_URL,
        }
        if cfg.public_url:
            node_env["PUBLIC_URL"] = cfg.public_url
        for key in ("CONTRACT_JOB_MARKETPLACE", "CONTRACT_PROOF_SYSTEM",
                    "CONTRACT_HOST_EARNINGS", "CUDA_VISIBLE_DEVICES"):
            if os.environ.get(key):
                node_env[key] = os.environ[key]
        return {**os.environ, **node_env, **cfg.env}

    def spawn_inference_server(self, cfg: ProcessConfig,
                               daemon: bool = False) -> ProcessHandle:
        """Launch the binary. Returns once the OS has created the process.

        Raises ProcessError if the binary is missing. OS-level spawn failures
        (OSError) propagate unchanged.
        """
        exec_path = self.find_executable()
        if not exec_path:
            raise ProcessError(
                f"{global_config.NODE_BINARY_NAME} not found. "
                "Please install it first.",
                ErrorCode.BINARY_NOT_FOUND,
                {"searched": self.candidate_paths()},
            )

        env = self.build_environment(cfg)
        cmd = [exec_path] + self.base_args
        log_path = None

        if daemon:
            os.makedirs(self.log_dir, exist_ok=True)
            log_path = os.path.join(self.log_dir, "node.log")
            with open(log_path, "ab") as log_fh:
                proc = subprocess.Popen(
                    cmd, env=env, cwd=cfg.working_dir or os.getcwd(),
                    stdin=subprocess.DEVNULL, stdout=log_fh,
                    stderr=subprocess.STDOUT, start_new_session=True,
                )
        else:
            proc = subprocess.Popen(
                cmd, env=env, cwd=cfg.working_dir or os.getcwd(),
                stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                stderr=subprocess.PIPE, start_new_session=True,
            )

        handle = ProcessHandle(
            pid=proc.pid,
            process=proc,
            config=cfg,
            logs=deque(maxlen=cfg.max_log_lines),
            log_path=log_path,
        )
        if not daemon:
            self._start_readers(handle)

        handle.status = "running"
        logger.info("Spawned %s (pid %d, port %d%s)", exec_path, proc.pid,
                    cfg.port, ", daemon" if daemon else "")
        return handle

    def _start_readers(self, handle: ProcessHandle):
        for stream, label in ((handle.process.stdout, "stdout"),
                              (handle.process.stderr, "stderr")):
            if stream is None:
                continue
            t = threading.Thread(target=self._pump, args=(handle, stream, label),
                                 daemon=True)
            t.start()
            handle.readers.append(t)

    @staticmethod
    def _pump(handle: ProcessHandle, stream, label: str):
        """Copy one child stream into the log buffer and listeners."""
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                with handle.lock:
                    handle.logs.append(f"[{label}] {line}")
                    for listener in handle.listeners:
                        listener(line, label)
        finally:
            stream.close()

    def stream_logs(self, handle: ProcessHandle,
                    sink: Callable[[str, str], None]):
        """Forward child output to sink(line, stream); replays buffered lines first."""
        with handle.lock:
            for entry in handle.logs:
                label, _, line = entry.partition("] ")
                sink(line, label.lstrip("["))
            handle.listeners.append(sink)

    # ------------------------------------------------------------------
    # Status / stop
    # ------------------------------------------------------------------

    @staticmethod
    def refresh_status(handle: ProcessHandle) -> str:
        code = handle.process.poll()
        if code is not None and handle.status not in ("stopped", "crashed"):
            handle.status = "stopped" if code == 0 else "crashed"
        return handle.status

    def get_node_info(self, handle: ProcessHandle) -> dict:
        uptime = datetime.now(timezone.utc) - handle.start_time
        return {
            "pid": handle.pid,
            "port": handle.config.port,
            "public_url": handle.config.public_url,
            "uptime": int(uptime.total_seconds()),
            "status": self.refresh_status(handle),
        }

    def stop_inference_server(self, handle: ProcessHandle, force: bool = False):
        """Stop a spawned server.

        force=True kills the whole process group immediately (rollback path).
        force=False sends SIGTERM and waits up to graceful_timeout without
        escalating; a child that ignores it is left in status "stopping".
        """
        if handle.status == "stopped":
            return
        proc = handle.process
        if proc.poll() is not None:
            handle.status = "stopped"
            return

        handle.status = "stopping"
        if force:
            self._signal_group(proc, signal.SIGKILL)
            try:
                proc.wait(timeout=global_config.ROLLBACK_KILL_WAIT_SECONDS)
            except subprocess.TimeoutExpired:
                logger.error("pid %d did not exit after SIGKILL", proc.pid)
                return
        else:
            self._signal_group(proc, signal.SIGTERM)
            try:
                proc.wait(timeout=self.graceful_timeout)
            except subprocess.TimeoutExpired:
                logger.warning("pid %d still running %.0fs after SIGTERM",
                               proc.pid, self.graceful_timeout)
                return

        handle.status = "stopped"
        logger.info("Inference server pid %d stopped%s", proc.pid,
                    " (forced)" if force else "")

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: int):
        # start_new_session=True makes the child its own group leader
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.send_signal(sig)

    def wait_for_exit(self, handle: ProcessHandle,
                      stop_event: Optional[threading.Event] = None,
                      poll_interval: float = 0.5) -> Optional[int]:
        """Block until the child exits or stop_event is set. Returns exit code."""
        while True:
            code = handle.process.poll()
            if code is not None:
                self.refresh_status(handle)
                for t in handle.readers:
                    t.join(timeout=READER_DRAIN_SECONDS)
                return code
            if stop_event is not None and stop_event.is_set():
                return None
            time.sleep(poll_interval)
