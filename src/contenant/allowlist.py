"""Network allowlist resolution.

Turns the configured domain list into IPv4 CIDR entries for the container's
firewall. Entries come from two places:

- GitHub's published ranges (web, api, git) when api.github.com is allowed
- A records of every configured domain, each as a /32

Resolution is fail-soft: a domain that does not resolve, or an unreachable
metadata endpoint, is logged and skipped. Partial allowlists are expected in
offline or sandboxed environments.
"""

from __future__ import annotations

import json
import socket
import tempfile
from collections.abc import Iterable
from typing import IO, Any

import requests

from .constants import GITHUB_API_HOST, GITHUB_META_KEYS, GITHUB_META_URL, REQUEST_TIMEOUT
from .errors import AllowlistError
from .logging import get_logger

logger = get_logger(__name__)


def fetch_github_ranges(url: str = GITHUB_META_URL) -> list[str]:
    """Fetch GitHub's published IPv4 CIDR ranges.

    Entries without a dot are treated as IPv6 and skipped.

    Returns:
        CIDR strings from the web, api and git categories, or an empty list
        if the endpoint cannot be reached or returns garbage.
    """
    try:
        resp = requests.get(url, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        meta: dict[str, Any] = resp.json()
    except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
        logger.warning("Failed to fetch GitHub IP ranges from %s: %s", url, e)
        return []

    if not isinstance(meta, dict):
        logger.warning("Unexpected GitHub metadata format from %s", url)
        return []

    ranges: list[str] = []
    for key in GITHUB_META_KEYS:
        entries = meta.get(key)
        if not isinstance(entries, list):
            continue
        for cidr in entries:
            if isinstance(cidr, str) and "." in cidr:
                logger.debug("Adding GitHub range %s (%s)", cidr, key)
                ranges.append(cidr)
    return ranges


def resolve_domain(domain: str) -> list[str]:
    """Resolve a domain to ``/32`` entries for each of its IPv4 addresses.

    Raises:
        socket.gaierror: If the domain cannot be resolved.
    """
    results = socket.getaddrinfo(domain, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    addresses: list[str] = []
    for family, _, _, _, sockaddr in results:
        if family == socket.AF_INET:
            addresses.append(f"{sockaddr[0]}/32")
    # getaddrinfo repeats addresses per socket type; keep first occurrence
    return list(dict.fromkeys(addresses))


def collect_allowed_ips(domains: Iterable[str]) -> list[str]:
    """Resolve domains into allowlist entries without writing a file."""
    domains = list(domains)
    entries: list[str] = []

    if GITHUB_API_HOST in domains:
        logger.info("Fetching GitHub IP ranges")
        entries.extend(fetch_github_ranges())

    for domain in domains:
        logger.info("Resolving domain %s", domain)
        try:
            resolved = resolve_domain(domain)
        except (OSError, UnicodeError) as e:
            logger.warning("Failed to resolve domain %s: %s", domain, e)
            continue
        if not resolved:
            logger.warning("Domain %s has no IPv4 addresses", domain)
        entries.extend(resolved)

    return list(dict.fromkeys(entries))


def resolve_allowed_ips(domains: Iterable[str]) -> IO[str]:
    """Resolve domains and write the entries to a temporary file.

    The returned file is deleted when closed. Keep it open until the container
    that mounts it has exited.

    Raises:
        AllowlistError: If the temporary file cannot be written.
    """
    entries = collect_allowed_ips(domains)
    try:
        handle = tempfile.NamedTemporaryFile(
            mode="w", encoding="utf-8", prefix="contenant-allowed-ips-", suffix=".txt"
        )
    except OSError as e:
        raise AllowlistError(f"Failed to create allowlist file: {e}") from e

    try:
        handle.write("".join(f"{entry}\n" for entry in entries))
        handle.flush()
    except OSError as e:
        try:
            handle.close()
        except OSError as close_error:
            logger.debug("Failed to close allowlist file: %s", close_error)
        raise AllowlistError(f"Failed to write allowlist file {handle.name}: {e}") from e

    logger.debug("Wrote %d allowlist entries to %s", len(entries), handle.name)
    return handle
