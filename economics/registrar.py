"""
Chain Registrar — web3 adapter for the NodeRegistry contract and stake token.

The sagas depend on three narrow capability sets rather than on this class,
so they can be exercised with in-memory fakes:

    HostRegistry     registration status, requirements, register/unregister
    TokenAllowance   ERC20 allowance/approve for the registry
    HostUpdates      add stake, update url/models/pricing, balances, info

HostChain is all three together.

Usage:
    registrar = ChainRegistrar(
        rpc_url="https://sepolia.base.org",
        registry_address="0x...",
        token_address="0x...",
        private_key="0x...",
    )
    status = registrar.check_registration_status()
    if not status.is_registered:
        registrar.register_host(RegistrationRequest(...))

Amounts are wei ints on the way in and out; formatting is the caller's job.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

import config as global_config
from economics.requirements import (
    RequirementsReport, check_registration_requirements,
)
from host.errors import (
    ChainTransactionError, ErrorCode, HostError, PreconditionError,
    classify_error,
)

logger = logging.getLogger("llmhost.chain")

ZERO_ADDRESS = "0x" + "0" * 40
TX_GAS_LIMIT = 500_000

# ---------------------------------------------------------------------------
# Minimal ABIs: only what the host CLI calls.
# ---------------------------------------------------------------------------

_REGISTRY_ABI = [
    # Views
    {
        "type": "function",
        "name": "getNodeFullInfo",
        "inputs": [{"name": "operator", "type": "address"}],
        "outputs": [
            {"name": "operator", "type": "address"},
            {"name": "stakedAmount", "type": "uint256"},
            {"name": "active", "type": "bool"},
            {"name": "metadata", "type": "string"},
            {"name": "apiUrl", "type": "string"},
            {"name": "supportedModels", "type": "bytes32[]"},
            {"name": "minPricePerTokenNative", "type": "uint256"},
            {"name": "minPricePerTokenStable", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "MIN_STAKE",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    # Host writes
    {
        "type": "function",
        "name": "registerNode",
        "inputs": [
            {"name": "metadata", "type": "string"},
            {"name": "apiUrl", "type": "string"},
            {"name": "modelIds", "type": "bytes32[]"},
            {"name": "minPricePerTokenNative", "type": "uint256"},
            {"name": "minPricePerTokenStable", "type": "uint256"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "stake",
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "unregisterNode",
        "inputs": [],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "updateApiUrl",
        "inputs": [{"name": "apiUrl", "type": "string"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "updateSupportedModels",
        "inputs": [{"name": "modelIds", "type": "bytes32[]"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "updatePricingStable",
        "inputs": [{"name": "newMinPrice", "type": "uint256"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "setModelPricing",
        "inputs": [
            {"name": "modelId", "type": "bytes32"},
            {"name": "nativePrice", "type": "uint256"},
            {"name": "stablePrice", "type": "uint256"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
]

_ERC20_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "allowance",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "approve",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
]


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass
class RegistrationStatus:
    """Snapshot of the on-chain record. Re-query, never cache."""
    is_registered: bool
    host_address: str = ""
    api_url: str = ""
    staked_amount: int = 0
    models: list = field(default_factory=list)
    is_active: bool = False
    metadata: str = ""
    min_price_native: int = 0
    min_price_stable: int = 0


@dataclass
class RegistrationRequest:
    api_url: str
    models: list
    stake_amount: int
    price_per_token: int = global_config.DEFAULT_PRICE_PER_TOKEN
    metadata: dict = field(default_factory=dict)


@dataclass
class Balances:
    eth: int
    stake_token: int
    staked: int = 0


def model_id_bytes(spec: str) -> bytes:
    """'repo:file' -> keccak256("repo/file") as bytes32."""
    repo, _, filename = spec.partition(":")
    return bytes(Web3.keccak(text=f"{repo}/{filename}"))


def model_id(spec: str) -> str:
    return Web3.to_hex(model_id_bytes(spec))


def to_wei(tokens: float) -> int:
    return Web3.to_wei(tokens, "ether")


def from_wei(wei: int) -> float:
    return float(Web3.from_wei(wei, "ether"))


def format_amount(wei: int, decimals: int = 4) -> str:
    return f"{from_wei(wei):.{decimals}f}"


def model_price_pair(price: int, price_type: str = "usdc") -> tuple[int, int]:
    """(native_wei, stable) for setModelPricing.

    usdc: stable = price * PRICE_PRECISION, native 0
    eth:  native = price gwei in wei, stable 0
    """
    if price_type == "usdc":
        return 0, int(price) * global_config.PRICE_PRECISION
    if price_type == "eth":
        return Web3.to_wei(int(price), "gwei"), 0
    raise ValueError(f"price_type must be 'usdc' or 'eth', got '{price_type}'")


# ---------------------------------------------------------------------------
# Capability sets
# ---------------------------------------------------------------------------

class HostRegistry(Protocol):
    def check_registration_status(self, address: Optional[str] = None
                                  ) -> RegistrationStatus: ...
    def validate_registration_requirements(self, stake_amount: int
                                           ) -> RequirementsReport: ...
    def register_host(self, request: RegistrationRequest) -> str: ...
    def unregister_host(self) -> str: ...


class TokenAllowance(Protocol):
    def check_allowance(self, amount: int) -> bool: ...
    def approve_token(self, amount: int) -> str: ...


class HostUpdates(Protocol):
    def add_stake(self, amount: int) -> str: ...
    def update_api_url(self, url: str) -> str: ...
    def update_supported_models(self, models: list) -> str: ...
    def set_model_pricing(self, spec: str, native: int, stable: int) -> str: ...
    def update_pricing(self, price: int) -> str: ...
    def get_balances(self, address: Optional[str] = None) -> Balances: ...
    def get_host_info(self, address: Optional[str] = None) -> RegistrationStatus: ...


class HostChain(HostRegistry, TokenAllowance, HostUpdates, Protocol):
    """Everything the commands reach through HostContext.registrar."""


# ---------------------------------------------------------------------------
# web3 implementation
# ---------------------------------------------------------------------------

class ChainRegistrar:
    """Signs NodeRegistry/ERC20 transactions with the host's own key."""

    def __init__(self, rpc_url: str, registry_address: str,
                 token_address: str, private_key: str):
        if not rpc_url:
            raise PreconditionError("No RPC URL configured",
                                    ErrorCode.RPC_ERROR)
        if not registry_address:
            raise PreconditionError("No NodeRegistry address configured",
                                    ErrorCode.INVALID_CONFIG)
        self._w3 = Web3(Web3.HTTPProvider(rpc_url))
        # Base and other L2s need the PoA extraData middleware
        self._w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self._registry = self._w3.eth.contract(
            address=Web3.to_checksum_address(registry_address),
            abi=_REGISTRY_ABI,
        )
        self._token = None
        if token_address:
            self._token = self._w3.eth.contract(
                address=Web3.to_checksum_address(token_address),
                abi=_ERC20_ABI,
            )
        self._key = private_key
        self._address = self._w3.eth.account.from_key(private_key).address
        logger.debug("Registrar for %s on %s (registry %s)",
                     self._address, rpc_url, registry_address)

    @property
    def address(self) -> str:
        return self._address

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _send_tx(self, fn, description: str = "",
                 code: ErrorCode = ErrorCode.TRANSACTION_FAILED) -> str:
        """Build, sign, send and wait for a transaction. Returns tx hash hex."""
        try:
            tx = fn.build_transaction({
                "from": self._address,
                "nonce": self._w3.eth.get_transaction_count(self._address),
                "gas": TX_GAS_LIMIT,
                "gasPrice": self._w3.eth.gas_price,
                "chainId": global_config.CHAIN_ID,
            })
            signed = self._w3.eth.account.sign_transaction(tx, self._key)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=global_config.TX_TIMEOUT_SECONDS)
        except ContractLogicError as e:
            raise ChainTransactionError(
                f"{description} reverted: {e}", ErrorCode.CONTRACT_REVERT,
                {"reason": str(e)}) from e
        except (Web3Exception, ValueError, ConnectionError) as e:
            raise ChainTransactionError(
                f"{description} failed: {e}", classify_error(e),
                {"reason": str(e)}) from e

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise ChainTransactionError(
                f"{description} failed", code, {"transaction_hash": tx_hex})
        logger.info("%s: OK (tx=%s... gas=%d)", description, tx_hex[:16],
                    receipt["gasUsed"])
        return tx_hex

    def _call(self, fn, description: str):
        try:
            return fn.call()
        except (Web3Exception, ValueError, ConnectionError) as e:
            raise HostError(f"{description} failed: {e}",
                            ErrorCode.STATUS_CHECK_FAILED,
                            {"reason": str(e)}) from e

    # ------------------------------------------------------------------
    # HostRegistry
    # ------------------------------------------------------------------

    def check_registration_status(self, address: Optional[str] = None
                                  ) -> RegistrationStatus:
        addr = Web3.to_checksum_address(address or self._address)
        info = self._call(self._registry.functions.getNodeFullInfo(addr),
                          "getNodeFullInfo")
        operator, staked, active, metadata, api_url, models, native, stable = info
        if operator == ZERO_ADDRESS:
            return RegistrationStatus(is_registered=False, host_address=addr)
        return RegistrationStatus(
            is_registered=True,
            host_address=operator,
            api_url=api_url,
            staked_amount=staked,
            models=["0x" + bytes(m).hex() for m in models],
            is_active=active,
            metadata=metadata,
            min_price_native=native,
            min_price_stable=stable,
        )

    def min_stake(self) -> int:
        return self._call(self._registry.functions.MIN_STAKE(), "MIN_STAKE")

    def validate_registration_requirements(self, stake_amount: int
                                           ) -> RequirementsReport:
        return check_registration_requirements(
            self.get_balances(), stake_amount, min_stake=self.min_stake())

    def register_host(self, request: RegistrationRequest) -> str:
        """approve (if needed) + stake + registerNode. Returns the register tx hash."""
        if request.stake_amount > 0:
            if not self.check_allowance(request.stake_amount):
                self.approve_token(request.stake_amount)
            self._send_tx(self._registry.functions.stake(request.stake_amount),
                          f"stake({format_amount(request.stake_amount)})",
                          ErrorCode.STAKING_FAILED)

        metadata = json.dumps(request.metadata or {
            "costPerToken": request.price_per_token,
        })
        fn = self._registry.functions.registerNode(
            metadata,
            request.api_url,
            [model_id_bytes(m) for m in request.models],
            0,
            int(request.price_per_token),
        )
        return self._send_tx(fn, "registerNode", ErrorCode.REGISTRATION_FAILED)

    def unregister_host(self) -> str:
        return self._send_tx(self._registry.functions.unregisterNode(),
                             "unregisterNode", ErrorCode.UNREGISTRATION_FAILED)

    # ------------------------------------------------------------------
    # TokenAllowance
    # ------------------------------------------------------------------

    def _require_token(self):
        if self._token is None:
            raise PreconditionError("No stake token address configured",
                                    ErrorCode.INVALID_CONFIG)
        return self._token

    def check_allowance(self, amount: int) -> bool:
        token = self._require_token()
        current = self._call(
            token.functions.allowance(self._address, self._registry.address),
            "allowance")
        return current >= amount

    def approve_token(self, amount: int) -> str:
        token = self._require_token()
        fn = token.functions.approve(self._registry.address, amount)
        return self._send_tx(fn, f"approve({format_amount(amount)})",
                             ErrorCode.APPROVAL_FAILED)

    # ------------------------------------------------------------------
    # HostUpdates
    # ------------------------------------------------------------------

    def add_stake(self, amount: int) -> str:
        return self._send_tx(self._registry.functions.stake(amount),
                             f"stake({format_amount(amount)})",
                             ErrorCode.STAKING_FAILED)

    def update_api_url(self, url: str) -> str:
        return self._send_tx(self._registry.functions.updateApiUrl(url),
                             "updateApiUrl")

    def update_supported_models(self, models: list) -> str:
        ids = [model_id_bytes(m) for m in models]
        return self._send_tx(self._registry.functions.updateSupportedModels(ids),
                             f"updateSupportedModels({len(ids)})")

    def set_model_pricing(self, spec: str, native: int, stable: int) -> str:
        fn = self._registry.functions.setModelPricing(
            model_id_bytes(spec), native, stable)
        return self._send_tx(fn, f"setModelPricing({spec})")

    def update_pricing(self, price: int) -> str:
        fn = self._registry.functions.updatePricingStable(int(price))
        return self._send_tx(fn, "updatePricingStable")

    def get_balances(self, address: Optional[str] = None) -> Balances:
        addr = Web3.to_checksum_address(address or self._address)
        try:
            eth = self._w3.eth.get_balance(addr)
        except (Web3Exception, ValueError, ConnectionError) as e:
            raise HostError(f"Balance query failed: {e}",
                            ErrorCode.RPC_ERROR) from e
        token_balance = 0
        if self._token is not None:
            token_balance = self._call(self._token.functions.balanceOf(addr),
                                       "balanceOf")
        status = self.check_registration_status(addr)
        return Balances(eth=eth, stake_token=token_balance,
                        staked=status.staked_amount)

    def get_host_info(self, address: Optional[str] = None) -> RegistrationStatus:
        return self.check_registration_status(address)
