"""
PID Manager — on-disk identity of the inference process run for this host.

The record is a small JSON file ({pid, public_url, start_time}). A record
whose pid no longer names a live OS process is stale: get_pid_info() purges
it and reports None, so callers only ever see "live record" or "nothing".
"""

import json
import logging
import os
from dataclasses import dataclass, asdict
from typing import Optional

import config as global_config
from host.host_config import utc_now_iso

logger = logging.getLogger("llmhost.pid")


@dataclass
class PIDRecord:
    pid: int
    public_url: str
    start_time: str


class PIDManager:
    """Persists and checks the PID record of the managed inference process."""

    def __init__(self, pid_path: Optional[str] = None):
        self.pid_path = pid_path or global_config.get_pid_path()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def read_pid(self) -> Optional[PIDRecord]:
        """Raw read without a liveness check. Unreadable files count as absent."""
        try:
            with open(self.pid_path, "r") as f:
                data = json.load(f)
            return PIDRecord(
                pid=int(data["pid"]),
                public_url=data.get("public_url", ""),
                start_time=data.get("start_time", ""),
            )
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable PID file %s: %s",
                           self.pid_path, e)
            return None

    def get_pid_info(self) -> Optional[PIDRecord]:
        """Return the record only if its process is alive; purge it otherwise."""
        record = self.read_pid()
        if record is None:
            # Corrupt leftovers are removed too
            if os.path.exists(self.pid_path):
                self.cleanup_stale_pid()
            return None
        if not self.is_process_running(record.pid):
            logger.info("Removing stale PID record (pid %d is not running)",
                        record.pid)
            self.cleanup_stale_pid()
            return None
        return record

    @staticmethod
    def is_process_running(pid: int) -> bool:
        """Signal-0 liveness probe. Never raises."""
        if not isinstance(pid, int) or pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by another user
            return True
        except OSError:
            return False
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save_pid_with_url(self, pid: int, public_url: str) -> PIDRecord:
        """Atomically write {pid, public_url, start_time=now}, replacing any record."""
        record = PIDRecord(pid=pid, public_url=public_url,
                           start_time=utc_now_iso())
        os.makedirs(os.path.dirname(self.pid_path) or ".", exist_ok=True)
        tmp_path = f"{self.pid_path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(asdict(record), f)
        os.replace(tmp_path, self.pid_path)
        logger.debug("Saved PID record pid=%d url=%s", pid, public_url)
        return record

    def remove_pid(self):
        """Delete the record. Safe when there is none."""
        try:
            os.remove(self.pid_path)
        except FileNotFoundError:
            pass

    def cleanup_stale_pid(self):
        """Delete a record known (or suspected) to be stale. Idempotent."""
        self.remove_pid()
