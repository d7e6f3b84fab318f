"""
llmhost - Configuration

Paths, chain addresses, and lifecycle defaults for the host CLI.
Per-installation host settings (URL, models, pricing) live in the persisted
HostConfig record instead, see host/host_config.py.
"""

import os

# Paths
LLMHOST_HOME = os.path.expanduser(os.environ.get("LLMHOST_HOME", "~/.llmhost"))
CONFIG_FILENAME = "config.json"
PID_FILENAME = "host.pid"
BACKUP_DIRNAME = "backups"
MAX_CONFIG_BACKUPS = int(os.environ.get("LLMHOST_MAX_BACKUPS", "10"))


def get_config_path() -> str:
    """Return the file path of the persisted host config."""
    return os.path.join(LLMHOST_HOME, CONFIG_FILENAME)


def get_pid_path() -> str:
    """Return the file path of the persisted PID record."""
    return os.path.join(LLMHOST_HOME, PID_FILENAME)


# Chain (defaults target Base Sepolia)
NETWORK = os.environ.get("LLMHOST_NETWORK", "base-sepolia")
CHAIN_ID = int(os.environ.get("CHAIN_ID", "84532"))
RPC_URL = os.environ.get("LLMHOST_RPC_URL", os.environ.get("RPC_URL_BASE_SEPOLIA", ""))
NODE_REGISTRY_ADDRESS = os.environ.get(
    "LLMHOST_NODE_REGISTRY", os.environ.get("CONTRACT_NODE_REGISTRY", ""))
STAKE_TOKEN_ADDRESS = os.environ.get(
    "LLMHOST_STAKE_TOKEN", os.environ.get("CONTRACT_FAB_TOKEN", ""))
TOKEN_SYMBOL = os.environ.get("LLMHOST_TOKEN_SYMBOL", "FAB")
TX_CONFIRMATIONS = 3
TX_TIMEOUT_SECONDS = 180

# Staking / pricing
DEFAULT_STAKE_TOKENS = 1000
DEFAULT_PRICE_PER_TOKEN = 2000          # registry min price, stable units per token
DEFAULT_MIN_JOB_DEPOSIT = 0.01
PRICE_PRECISION = 1000           # stable price = price * PRICE_PRECISION
MIN_MODEL_PRICE = 1
MAX_MODEL_PRICE = 100_000_000

# Inference binary
NODE_BINARY_NAME = "fabstir-llm-node"
NODE_BINARY_PATH = os.environ.get("LLMHOST_NODE_BINARY", "")
DEFAULT_BIND_HOST = "0.0.0.0"
DEFAULT_LOG_LEVEL = "info"
LOG_LEVELS = ("error", "warn", "info", "debug")
MAX_LOG_LINES = 1000
LOG_DIRNAME = "logs"
P2P_PORT = os.environ.get("P2P_PORT", "9000")

# Lifecycle timeouts
STOP_TIMEOUT_MS = 10000          # stop: graceful window before SIGKILL
STOP_POLL_INTERVAL_SECONDS = 0.2
ROLLBACK_KILL_WAIT_SECONDS = 5.0

# Reachability probe
HEALTH_PATH = "/health"
PROBE_TIMEOUT_SECONDS = 5.0
STARTUP_PROBE_WINDOW_SECONDS = float(
    os.environ.get("LLMHOST_STARTUP_WINDOW", "30"))
STARTUP_PROBE_INTERVAL_SECONDS = 1.0
DEFAULT_URL_PORT = 8080


def get_internal_port():
    """Port override for containerised deployments (INTERNAL_PORT), or None."""
    value = os.environ.get("INTERNAL_PORT", "")
    return int(value) if value else None
