"""
Host Errors — error taxonomy for the host lifecycle commands.

  HostError               base class: message + ErrorCode + details
  ├── ValidationError     bad input, raised before any side effect
  ├── PreconditionError   local/chain state forbids the command
  ├── ReachabilityError   public endpoint not reachable (triggers rollback)
  ├── ChainTransactionError  approval/stake/register tx failed (triggers rollback)
  └── ProcessError        spawn failure, missing binary

Raw exceptions from web3/requests/the OS are mapped to codes with
classify_error() so the CLI can print a resolution hint for anything.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    # Balance
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_GAS = "INSUFFICIENT_GAS"

    # Registration
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    NOT_REGISTERED = "NOT_REGISTERED"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    REQUIREMENTS_NOT_MET = "REQUIREMENTS_NOT_MET"
    UNREGISTRATION_FAILED = "UNREGISTRATION_FAILED"

    # Validation
    INVALID_API_URL = "INVALID_API_URL"
    INVALID_MODELS = "INVALID_MODELS"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_CONFIG = "INVALID_CONFIG"
    PORT_IN_USE = "PORT_IN_USE"

    # Staking
    STAKING_FAILED = "STAKING_FAILED"
    APPROVAL_FAILED = "APPROVAL_FAILED"

    # Transactions
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    CONTRACT_REVERT = "CONTRACT_REVERT"
    NONCE_ERROR = "NONCE_ERROR"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    ENDPOINT_UNREACHABLE = "ENDPOINT_UNREACHABLE"
    RPC_ERROR = "RPC_ERROR"
    STATUS_CHECK_FAILED = "STATUS_CHECK_FAILED"

    # Local state
    NO_CONFIG = "NO_CONFIG"
    NO_PUBLIC_URL = "NO_PUBLIC_URL"
    NO_WALLET = "NO_WALLET"

    # Process
    BINARY_NOT_FOUND = "BINARY_NOT_FOUND"
    SPAWN_FAILED = "SPAWN_FAILED"
    STOP_FAILED = "STOP_FAILED"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_RETRYABLE = {
    ErrorCode.NETWORK_ERROR,
    ErrorCode.RPC_ERROR,
    ErrorCode.NONCE_ERROR,
    ErrorCode.TRANSACTION_FAILED,
    ErrorCode.ENDPOINT_UNREACHABLE,
}

_RESOLUTIONS = {
    ErrorCode.INSUFFICIENT_BALANCE:
        "Fund your wallet with enough stake tokens and ETH for gas, then retry.",
    ErrorCode.INSUFFICIENT_GAS:
        "Add ETH to your wallet to pay for transaction gas.",
    ErrorCode.ALREADY_REGISTERED:
        "Use update-url / update-models / add-stake to change an existing registration.",
    ErrorCode.NOT_REGISTERED:
        "Register first with: llmhost register --api-url <url> --models <repo:file>",
    ErrorCode.REQUIREMENTS_NOT_MET:
        "Check balances with 'llmhost info' and top up the missing amounts.",
    ErrorCode.INVALID_API_URL:
        "Use a full URL with scheme and port, e.g. http://203.0.113.5:8080",
    ErrorCode.INVALID_MODELS:
        "Models must be <repo>:<file>, e.g. TheBloke/Llama-2-7B-GGUF:llama-2-7b.Q4_K_M.gguf",
    ErrorCode.INVALID_AMOUNT:
        "Pass a positive number inside the allowed range.",
    ErrorCode.PORT_IN_USE:
        "Stop whatever is listening on the port or choose another port in --api-url.",
    ErrorCode.APPROVAL_FAILED:
        "Token approval failed; check the token balance and retry.",
    ErrorCode.STAKING_FAILED:
        "Staking failed; verify the amount meets the minimum stake.",
    ErrorCode.CONTRACT_REVERT:
        "The contract rejected the transaction; check the inputs and contract state.",
    ErrorCode.NONCE_ERROR:
        "A pending transaction is blocking this one; wait for it to confirm.",
    ErrorCode.NETWORK_ERROR:
        "Check your internet connection and RPC URL.",
    ErrorCode.RPC_ERROR:
        "The RPC endpoint failed; retry or switch --rpc-url.",
    ErrorCode.ENDPOINT_UNREACHABLE:
        "Open the port in your firewall / router and make sure the URL is public.",
    ErrorCode.NO_CONFIG:
        "Run 'llmhost register' first.",
    ErrorCode.NO_PUBLIC_URL:
        "Re-register your host or run 'llmhost update-url <url>'.",
    ErrorCode.NO_WALLET:
        "Pass --private-key or set HOST_PRIVATE_KEY.",
    ErrorCode.BINARY_NOT_FOUND:
        "Install the inference node binary or set LLMHOST_NODE_BINARY.",
    ErrorCode.SPAWN_FAILED:
        "Check the node binary, its permissions, and that the port is free.",
}


class HostError(Exception):
    """Base error for all host lifecycle failures."""

    def __init__(self, message: str,
                 code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
                 details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.code in _RETRYABLE

    @property
    def resolution(self) -> str:
        return _RESOLUTIONS.get(self.code, "See the error message above.")

    def detailed_message(self) -> str:
        """Message plus whichever display details the error carries."""
        lines = [self.message]
        if self.details.get("transaction_hash"):
            lines.append(f"Transaction: {self.details['transaction_hash']}")
        if self.details.get("reason"):
            lines.append(f"Reason: {self.details['reason']}")
        if self.details.get("host_address"):
            lines.append(f"Host: {self.details['host_address']}")
        if self.details.get("api_url"):
            lines.append(f"API URL: {self.details['api_url']}")
        if self.details.get("staked"):
            lines.append(f"Staked: {self.details['staked']}")
        if "required" in self.details and "available" in self.details:
            lines.append(f"Required: {self.details['required']}, "
                         f"Available: {self.details['available']}")
        return "\n".join(lines)


class ValidationError(HostError):
    pass


class PreconditionError(HostError):
    pass


class ReachabilityError(HostError):

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.ENDPOINT_UNREACHABLE, details)


class ChainTransactionError(HostError):
    pass


class ProcessError(HostError):
    pass


def classify_error(error: BaseException) -> ErrorCode:
    """Best-effort ErrorCode for an arbitrary exception."""
    if isinstance(error, HostError):
        return error.code

    message = str(error).lower()
    if "insufficient" in message and ("gas" in message or "funds" in message):
        return ErrorCode.INSUFFICIENT_GAS
    if "insufficient" in message and "balance" in message:
        return ErrorCode.INSUFFICIENT_BALANCE
    if "already registered" in message:
        return ErrorCode.ALREADY_REGISTERED
    if "not registered" in message:
        return ErrorCode.NOT_REGISTERED
    if "nonce" in message:
        return ErrorCode.NONCE_ERROR
    if "revert" in message:
        return ErrorCode.CONTRACT_REVERT
    if "network" in message or "timeout" in message or "timed out" in message:
        return ErrorCode.NETWORK_ERROR
    if isinstance(error, ConnectionError):
        return ErrorCode.RPC_ERROR
    return ErrorCode.UNKNOWN_ERROR


def describe_error(error: BaseException) -> tuple[str, str, bool]:
    """Return (message, resolution, retryable) for display."""
    if not isinstance(error, HostError):
        error = HostError(str(error) or type(error).__name__,
                          classify_error(error))
    return error.detailed_message(), error.resolution, error.retryable
