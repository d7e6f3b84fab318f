"""
Registration requirements — minimum balances a wallet needs before it may
stake and register.

Pure functions over a balance snapshot so the check can run against real
chain data or a test fake alike.
"""

from dataclasses import dataclass, field

from web3 import Web3

import config as global_config

MIN_ETH_WEI = Web3.to_wei(0.015, "ether")       # gas for approve + stake + register
MIN_STAKE_WEI = Web3.to_wei(1000, "ether")


@dataclass
class RequirementCheck:
    name: str
    required: int
    available: int

    @property
    def ok(self) -> bool:
        return self.available >= self.required


@dataclass
class RequirementsReport:
    meets_all: bool
    errors: list = field(default_factory=list)
    checks: list = field(default_factory=list)


def check_registration_requirements(balances, stake_amount: int = MIN_STAKE_WEI,
                                    min_stake: int = MIN_STAKE_WEI
                                    ) -> RequirementsReport:
    """balances: anything with .eth and .stake_token (wei).

    min_stake is the registry's on-chain MIN_STAKE when known.
    """
    symbol = global_config.TOKEN_SYMBOL
    checks = [
        RequirementCheck("ETH (gas)", MIN_ETH_WEI, balances.eth),
        RequirementCheck(f"{symbol} (stake)", max(stake_amount, min_stake),
                         balances.stake_token),
    ]
    errors = []
    for check in checks:
        if not check.ok:
            errors.append(
                f"Insufficient {check.name} balance: need "
                f"{Web3.from_wei(check.required, 'ether')}, have "
                f"{Web3.from_wei(check.available, 'ether')}")
    if stake_amount < min_stake:
        errors.append(
            f"Stake amount {Web3.from_wei(stake_amount, 'ether')} is below the "
            f"minimum of {Web3.from_wei(min_stake, 'ether')} {symbol}")
    return RequirementsReport(meets_all=not errors, errors=errors, checks=checks)


def format_requirements_report(report: RequirementsReport) -> str:
    lines = []
    for check in report.checks:
        mark = "OK" if check.ok else "MISSING"
        lines.append(f"  [{mark:>7}] {check.name:<16} "
                     f"{Web3.from_wei(check.available, 'ether')} / "
                     f"{Web3.from_wei(check.required, 'ether')}")
    for error in report.errors:
        if not error.startswith("Insufficient"):
            lines.append(f"  {error}")
    return "\n".join(lines)
