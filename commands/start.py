"""
Start — launch the inference node for an already registered host.

No chain calls: the persisted HostConfig says what to run. A live PID
record makes start a no-op, a stale one is cleaned up and replaced.

Daemon mode (default) returns once the process exists. Foreground mode
streams the node's output and blocks until it exits or the operator
presses Ctrl+C; the PID record and config pid fields are cleared on the
way out.
"""

import logging
import signal
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import config as global_config
from commands.context import HostContext, build_context, ensure_can_spawn
from host.errors import ErrorCode, PreconditionError
from host.process import ProcessConfig
from network.probe import extract_host_port

logger = logging.getLogger("llmhost.start")


@dataclass
class StartResult:
    pid: int
    public_url: str
    already_running: bool = False
    daemon: bool = True
    exit_code: Optional[int] = None


def start_host(ctx: HostContext, daemon: bool = True,
               log_level: str = global_config.DEFAULT_LOG_LEVEL,
               stop_event: Optional[threading.Event] = None,
               sink: Optional[Callable[[str, str], None]] = None) -> StartResult:
    cfg = ctx.store.load()
    if cfg is None:
        raise PreconditionError(
            'No configuration found. Run "llmhost register" first.',
            ErrorCode.NO_CONFIG)
    if not cfg.public_url:
        raise PreconditionError(
            "No public URL configured. Re-register your host.",
            ErrorCode.NO_PUBLIC_URL)

    running = ctx.pids.get_pid_info()
    if running is not None:
        logger.info("Node already running (pid %d)", running.pid)
        return StartResult(pid=running.pid, public_url=running.public_url,
                           already_running=True, daemon=daemon)

    port = global_config.get_internal_port() or extract_host_port(cfg.public_url)[1]
    ensure_can_spawn(ctx, port)
    handle = ctx.supervisor.spawn_inference_server(
        ProcessConfig(
            port=port,
            host=global_config.DEFAULT_BIND_HOST,
            public_url=cfg.public_url,
            models=list(cfg.models),
            log_level=log_level,
        ),
        daemon=daemon,
    )

    record = ctx.pids.save_pid_with_url(handle.pid, cfg.public_url)
    ctx.store.save(cfg.with_process(handle.pid, record.start_time))
    result = StartResult(pid=handle.pid, public_url=cfg.public_url,
                         daemon=daemon)
    if daemon:
        return result

    ctx.supervisor.stream_logs(handle, sink or _print_line)
    result.exit_code = _run_foreground(ctx, handle, stop_event or threading.Event())
    return result


def _run_foreground(ctx: HostContext, handle, stop_event: threading.Event
                    ) -> Optional[int]:
    """Block until the child exits or stop_event fires, then clear state."""
    try:
        code = ctx.supervisor.wait_for_exit(handle, stop_event)
        if code is None:
            print("\n[Start] Stopping node...")
            ctx.supervisor.stop_inference_server(handle)
            if handle.status == "stopping":
                ctx.supervisor.stop_inference_server(handle, force=True)
            code = handle.process.poll()
        elif code != 0:
            logger.warning("Node exited with code %d", code)
    finally:
        ctx.pids.remove_pid()
        cfg = ctx.store.load()
        if cfg is not None and cfg.has_process:
            ctx.store.save(cfg.without_process())
    return code


def _print_line(line: str, stream: str):
    print(line)


def _install_signal_handlers(stop_event: threading.Event):
    def handler(signum, frame):
        stop_event.set()
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def run_start(args):
    ctx = build_context(args)
    daemon = not args.foreground
    stop_event = threading.Event()
    if not daemon:
        _install_signal_handlers(stop_event)

    result = start_host(ctx, daemon=daemon, log_level=args.log_level,
                        stop_event=stop_event)
    if result.already_running:
        print(f"[Start] Node already running (PID: {result.pid})")
        print(f"[Start] URL: {result.public_url}")
        return
    if daemon:
        print(f"[Start] Node started in background (PID: {result.pid})")
        print(f"[Start] URL: {result.public_url}")
        print("[Start] Stop with: llmhost stop")
    else:
        print(f"[Start] Node exited (code {result.exit_code})")
