"""
Network Probe — is the advertised public URL actually reachable?

The register saga refuses to put a URL on chain until a GET on
<url>/health answers 200. Everything here is read-only; the probe functions
never raise on network trouble, they return False.
"""

import logging
import time
from typing import Optional
from urllib.parse import urlsplit

import requests

import config as global_config

logger = logging.getLogger("llmhost.probe")

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


def extract_host_port(url: str) -> tuple[str, int]:
    """(host, port) of url; port defaults to 8080. Raises ValueError if unparseable."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except (TypeError, ValueError, AttributeError) as e:
        raise ValueError(f"Invalid URL: {url}") from e
    host = parts.hostname  # brackets already stripped for IPv6
    if not parts.scheme or not host:
        raise ValueError(f"Invalid URL: {url}")
    return host, port if port is not None else global_config.DEFAULT_URL_PORT


def is_localhost_url(url: str) -> bool:
    host, _ = extract_host_port(url)
    return host.lower() in _LOCAL_HOSTS


def warn_if_localhost(url: str) -> bool:
    """Print an advisory for loopback URLs. Returns True if one was shown."""
    try:
        local = is_localhost_url(url)
    except ValueError:
        return False
    if local:
        message = (f"WARNING: {url} points at localhost. It will NOT be "
                   "accessible to remote clients; use a public address in "
                   "production.")
        logger.warning(message)
        print(f"[Probe] {message}")
    return local


def health_url(url: str) -> str:
    return url.rstrip("/") + global_config.HEALTH_PATH


def verify_public_endpoint(url: str,
                           timeout: float = global_config.PROBE_TIMEOUT_SECONDS
                           ) -> bool:
    """GET <url>/health; True only on HTTP 200."""
    try:
        resp = requests.get(health_url(url), timeout=timeout)
    except (requests.RequestException, ValueError) as e:
        logger.debug("Probe of %s failed: %s", url, e)
        return False
    if resp.status_code != 200:
        logger.debug("Probe of %s returned HTTP %d", url, resp.status_code)
        return False
    return True


def wait_for_endpoint(url: str,
                      timeout: float = global_config.STARTUP_PROBE_WINDOW_SECONDS,
                      interval: float = global_config.STARTUP_PROBE_INTERVAL_SECONDS,
                      probe_timeout: Optional[float] = None) -> bool:
    """Poll verify_public_endpoint until it passes or timeout elapses.

    At least one probe is always made, even with timeout=0.
    """
    deadline = time.monotonic() + timeout
    per_probe = probe_timeout or global_config.PROBE_TIMEOUT_SECONDS
    attempt = 0
    while True:
        attempt += 1
        if verify_public_endpoint(url, timeout=per_probe):
            logger.info("%s reachable after %d probe(s)", url, attempt)
            return True
        if time.monotonic() + interval > deadline:
            return False
        time.sleep(interval)


def troubleshooting_hints(url: str) -> list[str]:
    """Operator-facing checklist for an unreachable endpoint."""
    try:
        host, port = extract_host_port(url)
    except ValueError:
        return [f"'{url}' is not a valid URL"]
    hints = [
        f"Is the node listening on port {port}? (check 'llmhost start --foreground' output)",
        f"Is port {port} open in the firewall? e.g. sudo ufw allow {port}/tcp",
        f"If behind NAT, is port {port} forwarded to this machine?",
        f"Can you reach it yourself? curl {health_url(url)}",
    ]
    if host.lower() in _LOCAL_HOSTS:
        hints.insert(0, f"{host} is a loopback address; remote clients cannot reach it")
    return hints
