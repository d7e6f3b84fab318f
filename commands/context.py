"""
Per-invocation wiring of the host's collaborators.

Every command receives one HostContext instead of reaching for module-level
singletons, so tests swap in fakes by passing them to the constructor. The
chain registrar is built lazily: stop/start never need a wallet.
"""

import logging
import os
from typing import Callable, Optional

import config as global_config
from economics.registrar import HostChain
from host.daemon import DaemonManager
from host.errors import ErrorCode, PreconditionError, ValidationError
from host.host_config import ConfigStore
from host.pid import PIDManager
from host.process import ProcessSupervisor
from host.validation import check_binary_available, check_port_available

logger = logging.getLogger("llmhost.context")


class HostContext:
    """Config store, PID manager, supervisor, daemon manager, registrar."""

    def __init__(self, store: Optional[ConfigStore] = None,
                 pids: Optional[PIDManager] = None,
                 supervisor: Optional[ProcessSupervisor] = None,
                 daemons: Optional[DaemonManager] = None,
                 registrar: Optional[HostChain] = None,
                 registrar_factory: Optional[Callable[[], HostChain]] = None,
                 rpc_url: str = "",
                 port_available: Callable[[int], bool] = check_port_available):
        self.store = store or ConfigStore()
        self.pids = pids or PIDManager()
        self.supervisor = supervisor or ProcessSupervisor()
        self.daemons = daemons or DaemonManager()
        self.rpc_url = rpc_url
        self.port_available = port_available
        self._registrar = registrar
        self._registrar_factory = registrar_factory

    @property
    def registrar(self) -> HostChain:
        if self._registrar is None:
            if self._registrar_factory is None:
                raise PreconditionError("No chain registrar configured",
                                        ErrorCode.NO_WALLET)
            self._registrar = self._registrar_factory()
        return self._registrar


def ensure_can_spawn(ctx: HostContext, port: int):
    """Raise ValidationError unless the binary resolves and port is free."""
    if not check_binary_available(ctx.supervisor):
        raise ValidationError(
            f"Inference node binary '{global_config.NODE_BINARY_NAME}' not found",
            ErrorCode.BINARY_NOT_FOUND)
    if not ctx.port_available(port):
        raise ValidationError(f"Port {port} is already in use",
                              ErrorCode.PORT_IN_USE, {"port": port})


def resolve_private_key(args) -> str:
    return (getattr(args, "private_key", None)
            or os.environ.get("HOST_PRIVATE_KEY", ""))


def build_context(args) -> HostContext:
    """Wire the real collaborators from CLI args and the environment."""
    store = ConfigStore()
    rpc_url = getattr(args, "rpc_url", None) or global_config.RPC_URL
    if not rpc_url and store.exists():
        saved = store.load()
        rpc_url = saved.rpc_url if saved else ""

    def make_registrar():
        from economics.registrar import ChainRegistrar
        private_key = resolve_private_key(args)
        if not private_key:
            raise PreconditionError(
                "No wallet configured. Pass --private-key or set HOST_PRIVATE_KEY.",
                ErrorCode.NO_WALLET)
        return ChainRegistrar(
            rpc_url=rpc_url,
            registry_address=global_config.NODE_REGISTRY_ADDRESS,
            token_address=global_config.STAKE_TOKEN_ADDRESS,
            private_key=private_key,
        )

    return HostContext(store=store, registrar_factory=make_registrar,
                       rpc_url=rpc_url)
