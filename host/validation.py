"""
Pre-flight validation — pure checks run before any side effect.

Every validator returns a ValidationResult instead of raising so the
orchestrator can decide which failures are fatal.
"""

import errno
import logging
import re
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from web3 import Web3

logger = logging.getLogger("llmhost.validation")

# <repo>:<file>, repo may contain "/" (org/name)
_MODEL_PART = re.compile(r"^[A-Za-z0-9._\-/]+$")


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None

    def __bool__(self):
        return self.valid


OK = ValidationResult(True)


def validate_public_url(url: str) -> ValidationResult:
    """http/https with an explicit port."""
    if not url or not isinstance(url, str):
        return ValidationResult(False, "Invalid URL format")
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return ValidationResult(False, "Invalid URL format")
    if not parts.scheme or not parts.hostname:
        return ValidationResult(False, "Invalid URL format")
    if parts.scheme not in ("http", "https"):
        return ValidationResult(
            False, f"URL must use http or https (got '{parts.scheme}')")
    if port is None:
        return ValidationResult(
            False, "URL must include an explicit port (e.g. http://host:8080)")
    return OK


def validate_model_spec(spec: str) -> Optional[str]:
    """Error text for one model entry, or None if it is well-formed."""
    if not isinstance(spec, str) or spec.count(":") != 1:
        return f"Invalid model format: '{spec}' (expected <repo>:<file>)"
    repo, filename = spec.split(":")
    if not repo or not filename:
        return f"Invalid model format: '{spec}' (repo and file must be non-empty)"
    if not _MODEL_PART.match(repo) or not _MODEL_PART.match(filename):
        return f"Invalid model format: '{spec}' (contains invalid characters)"
    return None


def validate_models(models) -> ValidationResult:
    if not models:
        return ValidationResult(False, "At least one model is required")
    for spec in models:
        error = validate_model_spec(spec)
        if error:
            return ValidationResult(False, error)
    return OK


def validate_amount(value, minimum: float = 0, maximum: Optional[float] = None,
                    label: str = "Amount", exclusive_min: bool = False
                    ) -> ValidationResult:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ValidationResult(False, f"{label} must be a number, got '{value}'")
    if number != number:  # NaN
        return ValidationResult(False, f"{label} must be a number, got '{value}'")
    if exclusive_min and number <= minimum:
        return ValidationResult(False, f"{label} must be greater than {minimum}")
    if not exclusive_min and number < minimum:
        return ValidationResult(False, f"{label} must be at least {minimum}")
    if maximum is not None and number > maximum:
        return ValidationResult(False, f"{label} must be at most {maximum}")
    return OK


def validate_address(address: str) -> ValidationResult:
    if isinstance(address, str) and Web3.is_address(address):
        return OK
    return ValidationResult(False, f"Invalid address: '{address}'")


def check_binary_available(supervisor=None) -> bool:
    """True if the inference binary can be resolved. Never raises."""
    if supervisor is None:
        from host.process import ProcessSupervisor
        supervisor = ProcessSupervisor()
    try:
        return supervisor.find_executable() is not None
    except OSError:
        return False


def check_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """Try to bind a listener on port and release it straight away."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
        return True
    except OSError as e:
        if e.errno not in (errno.EADDRINUSE, errno.EACCES):
            logger.debug("Port %d bind check failed: %s", port, e)
        return False
    finally:
        sock.close()
