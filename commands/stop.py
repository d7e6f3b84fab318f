"""
Stop — terminate the host's inference node, wherever it was started from.

Only the PID record is consulted; nothing on chain changes. Stopping a
host that is not running is a successful no-op.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import config as global_config
from commands.context import HostContext, build_context

logger = logging.getLogger("llmhost.stop")


@dataclass
class StopResult:
    was_running: bool
    pid: Optional[int] = None
    outcome: str = "not_running"


def stop_host(ctx: HostContext, timeout_ms: int = global_config.STOP_TIMEOUT_MS,
              force: bool = False) -> StopResult:
    record = ctx.pids.get_pid_info()
    if record is None:
        return StopResult(was_running=False)

    outcome = ctx.daemons.stop_daemon(record.pid, timeout_ms=timeout_ms,
                                      force=force)
    # Only after the process is gone
    ctx.pids.remove_pid()

    cfg = ctx.store.load()
    if cfg is not None:
        ctx.store.save(cfg.without_process())
    logger.info("Stopped pid %d (%s)", record.pid, outcome)
    return StopResult(was_running=True, pid=record.pid, outcome=outcome)


def run_stop(args):
    ctx = build_context(args)
    result = stop_host(ctx, timeout_ms=args.timeout, force=args.force)
    if not result.was_running:
        print("[Stop] Node is not running")
        return
    how = "forcefully" if result.outcome == "forced" else "gracefully"
    print(f"[Stop] Node stopped {how} (PID: {result.pid})")
