"""
Host Configuration — the persisted per-installation host record.

One HostConfig per installation, stored as JSON (default
~/.llmhost/config.json). The public URL is the source of truth for the
advertised endpoint; inference_port is derived from it.

process_pid and node_start_time describe the process currently believed to
be managed for this host. They are set together and cleared together:

    store = ConfigStore()
    cfg = store.load()                       # None if never registered
    store.save(cfg.with_process(4242))       # pid + start time
    store.save(cfg.without_process())        # both cleared, rest untouched

Usage:
    from host.host_config import ConfigStore, HostConfig, print_config_summary
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field, fields, asdict, replace
from datetime import datetime, timezone
from typing import Optional

import config as global_config

logger = logging.getLogger("llmhost.config")

CONFIG_VERSION = "1.0"

# Pre-1.0 records used these keys
_LEGACY_KEYS = {
    "port": "inference_port",
    "api_url": "public_url",
    "wallet": "wallet_address",
    "price": "price_per_token",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# HostConfig
# ---------------------------------------------------------------------------

@dataclass
class HostConfig:
    """Persisted host settings."""

    version: str = CONFIG_VERSION

    # --- Identity / connection (set at first registration) ---
    wallet_address: str = ""
    network: str = "base-sepolia"
    rpc_url: str = ""

    # --- Advertised endpoint ---
    inference_port: int = global_config.DEFAULT_URL_PORT
    public_url: str = ""

    # --- Capabilities / economics ---
    models: list = field(default_factory=list)
    price_per_token: int = global_config.DEFAULT_PRICE_PER_TOKEN
    min_job_deposit: float = global_config.DEFAULT_MIN_JOB_DEPOSIT

    # --- Managed process (both set or both None) ---
    process_pid: Optional[int] = None
    node_start_time: Optional[str] = None

    def with_process(self, pid: int,
                     start_time: Optional[str] = None) -> "HostConfig":
        """Copy with the managed-process fields set."""
        return replace(self, process_pid=pid,
                       node_start_time=start_time or utc_now_iso())

    def without_process(self) -> "HostConfig":
        """Copy with the managed-process fields cleared, everything else kept."""
        return replace(self, process_pid=None, node_start_time=None)

    @property
    def has_process(self) -> bool:
        return self.process_pid is not None

    def to_dict(self) -> dict:
        return asdict(self)


def _validate(cfg: HostConfig):
    """Validate a loaded config and raise clear errors."""
    if not 0 < cfg.inference_port < 65536:
        raise ValueError(
            f"inference_port must be in 1-65535, got {cfg.inference_port}")
    if not isinstance(cfg.models, list):
        raise ValueError(f"models must be a list, got {type(cfg.models).__name__}")
    if cfg.price_per_token < 0:
        raise ValueError(
            f"price_per_token must be >= 0, got {cfg.price_per_token}")
    if (cfg.process_pid is None) != (cfg.node_start_time is None):
        raise ValueError(
            "process_pid and node_start_time must be set together")


def migrate_config(data: dict) -> dict:
    """Bring an older on-disk record up to CONFIG_VERSION."""
    version = str(data.get("version", "0.9"))
    if version == CONFIG_VERSION:
        return data

    migrated = {}
    for key, value in data.items():
        migrated[_LEGACY_KEYS.get(key, key)] = value
    migrated["version"] = CONFIG_VERSION
    logger.info("Migrated host config from version %s to %s",
                version, CONFIG_VERSION)
    return migrated


def config_from_dict(data: dict, source: str = "") -> HostConfig:
    """Build a typed HostConfig, ignoring (and warning about) unknown keys."""
    data = migrate_config(dict(data))
    valid_keys = {fld.name for fld in fields(HostConfig)}
    for k in data:
        if k not in valid_keys and not k.startswith("_"):
            logger.warning("'%s' is not a valid HostConfig field (ignored)%s",
                           k, f" in {source}" if source else "")

    filtered = {k: v for k, v in data.items() if k in valid_keys}
    cfg = HostConfig(**filtered)
    # Half-present pid markers are treated as absent
    if (cfg.process_pid is None) != (cfg.node_start_time is None):
        logger.warning("Dropping half-set process markers from %s",
                       source or "config")
        cfg = cfg.without_process()
    _validate(cfg)
    return cfg


# ---------------------------------------------------------------------------
# ConfigStore
# ---------------------------------------------------------------------------

class ConfigStore:
    """Reads and writes the single HostConfig record."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or global_config.get_config_path()

    @property
    def backup_dir(self) -> str:
        return os.path.join(os.path.dirname(self.path),
                            global_config.BACKUP_DIRNAME)

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Optional[HostConfig]:
        """Return the stored config, or None if none has been saved yet."""
        if not self.exists():
            return None
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid configuration file {self.path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Invalid configuration file {self.path}")
        return config_from_dict(data, self.path)

    def save(self, cfg: HostConfig, backup: bool = True):
        """Atomically write the config, backing up the previous record."""
        _validate(cfg)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        if backup and self.exists():
            self.backup()

        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(cfg.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise OSError(f"Failed to save configuration: {e}") from e
        logger.debug("Saved host config to %s", self.path)

    def update(self, **changes) -> Optional[HostConfig]:
        """Load, apply field changes, save. No-op (None) when no config exists."""
        cfg = self.load()
        if cfg is None:
            return None
        updated = replace(cfg, **changes)
        self.save(updated)
        return updated

    def backup(self) -> str:
        """Copy the current record to backups/config-<timestamp>.json.

        Only the newest MAX_CONFIG_BACKUPS copies are kept.
        """
        os.makedirs(self.backup_dir, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        backup_path = os.path.join(self.backup_dir, f"config-{stamp}.json")
        try:
            shutil.copy2(self.path, backup_path)
        except OSError as e:
            raise OSError(f"Failed to backup configuration: {e}") from e
        self._prune_backups()
        return backup_path

    def list_backups(self) -> list[str]:
        """Backup paths, oldest first."""
        if not os.path.isdir(self.backup_dir):
            return []
        names = sorted(n for n in os.listdir(self.backup_dir)
                       if n.startswith("config-") and n.endswith(".json"))
        return [os.path.join(self.backup_dir, n) for n in names]

    def _prune_backups(self):
        backups = self.list_backups()
        for path in backups[:max(len(backups) - global_config.MAX_CONFIG_BACKUPS, 0)]:
            os.remove(path)
            logger.debug("Removed old config backup %s", path)

    def restore(self, backup_path: str) -> HostConfig:
        """Replace the current record with a backup and return it."""
        with open(backup_path, "r") as f:
            cfg = config_from_dict(json.load(f), backup_path)
        self.save(cfg, backup=False)
        return cfg


# ---------------------------------------------------------------------------
# Pretty-print
# ---------------------------------------------------------------------------

def print_config_summary(cfg: HostConfig, path: Optional[str] = None):
    """Print the resolved host configuration."""
    sep = "=" * 60
    div = "-" * 60

    print(sep)
    print("  llmhost — Local Configuration")
    print(sep)
    print(f"  Wallet:          {cfg.wallet_address or '(not set)'}")
    print(f"  Network:         {cfg.network}")
    print(f"  RPC:             {cfg.rpc_url or '(default)'}")
    print(div)
    print(f"  Public URL:      {cfg.public_url or '(not set)'}")
    print(f"  Port:            {cfg.inference_port}")
    print(f"  Models:          {', '.join(cfg.models) if cfg.models else '(none)'}")
    print(f"  Price/token:     {cfg.price_per_token}")
    print(f"  Min deposit:     {cfg.min_job_deposit}")
    print(div)
    if cfg.has_process:
        print(f"  Process:         pid {cfg.process_pid} "
              f"(since {cfg.node_start_time})")
    else:
        print("  Process:         not running")
    print(div)
    print(f"  Config file:     {path or '(in memory)'}")
    print(sep)
