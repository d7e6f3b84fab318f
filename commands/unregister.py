"""
Unregister — take the host off chain and stop its node.

The unregister transaction is sent first; the local node is stopped only
afterwards, the same way `llmhost stop` does it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import config as global_config
from commands.context import HostContext, build_context
from commands.stop import StopResult, stop_host
from economics.registrar import RegistrationStatus, format_amount
from host.errors import ErrorCode, HostError

logger = logging.getLogger("llmhost.unregister")


@dataclass
class UnregisterResult:
    was_registered: bool
    transaction_hash: str = ""
    staked_amount: int = 0
    confirmed_inactive: bool = False
    stop: Optional[StopResult] = None


def unregister(ctx: HostContext,
               announce: Optional[Callable[[RegistrationStatus], None]] = None
               ) -> UnregisterResult:
    """announce(status) runs before the unregister tx is sent."""
    registrar = ctx.registrar
    status = registrar.check_registration_status()
    if not status.is_registered:
        return UnregisterResult(was_registered=False)

    logger.info("Unregistering %s (staked %s)", status.host_address,
                format_amount(status.staked_amount))
    if announce:
        announce(status)
    try:
        tx_hash = registrar.unregister_host()
    except HostError:
        raise
    except Exception as e:
        raise HostError(f"Unregistration failed: {e}",
                        ErrorCode.UNREGISTRATION_FAILED,
                        {"reason": str(e)}) from e

    after = registrar.check_registration_status()
    confirmed = not (after.is_registered and after.is_active)
    if not confirmed:
        logger.warning("Host still reported active after unregister tx %s",
                       tx_hash)

    return UnregisterResult(
        was_registered=True,
        transaction_hash=tx_hash,
        staked_amount=status.staked_amount,
        confirmed_inactive=confirmed,
        stop=stop_host(ctx),
    )


def run_unregister(args):
    ctx = build_context(args)
    symbol = global_config.TOKEN_SYMBOL

    def announce(status):
        print(f"[Unregister] Host: {status.host_address}")
        print(f"[Unregister] Staked amount to be returned: "
              f"{format_amount(status.staked_amount)} {symbol}")

    result = unregister(ctx, announce=announce)
    if not result.was_registered:
        print("[Unregister] Host is not registered, nothing to do")
        return
    print(f"[Unregister] Transaction: {result.transaction_hash}")
    if not result.confirmed_inactive:
        print("[Unregister] Warning: registry still reports the host as active")
    if result.stop and result.stop.was_running:
        print(f"[Unregister] Stopped node (PID: {result.stop.pid})")
    print("[Unregister] Host unregistered")
