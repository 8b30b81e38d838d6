from __future__ import annotations

import ipaddress
import logging
import re
from typing import Optional, Tuple
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_PORTS = (80, 443)
TLD_SUFFIX = re.compile(r"\.[a-z]{2,}$", re.IGNORECASE)
PLACEHOLDER_CHARS = re.compile(r"[{}\[\]]")


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address((host or "").strip("[]"))
    except ValueError:
        return False
    return True


def has_tld_suffix(host: str) -> bool:
    return bool(TLD_SUFFIX.search(host or ""))


def has_placeholder(host: str) -> bool:
    return bool(PLACEHOLDER_CHARS.search(host or ""))


def normalize_host_key(url: str) -> Optional[str]:
    """
    Canonical dedup/storage key for a URL or host.
    Accepts:
      - https://www.example.com/path      -> example.com
      - HTTPS://WWW.Example.com:443/x     -> example.com
      - https://example.com:8443          -> example.com:8443
      - example.com:8443                  -> example.com:8443
    Returns None when no host can be parsed.
    """
    t = (url or "").strip()
    if not t:
        logger.warning("Invalid URL skipped: empty value")
        return None

    # bare keys have no scheme; give urlsplit a netloc to work with
    if "://" not in t:
        t = "//" + t

    try:
        parts = urlsplit(t)
        host = parts.hostname
        port = parts.port
    except ValueError:
        logger.warning("Invalid URL skipped: %s", url)
        return None

    if not host:
        logger.warning("Invalid URL skipped: %s", url)
        return None

    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    if not host:
        logger.warning("Invalid URL skipped: %s", url)
        return None

    # IPv6 literals keep their brackets so the port stays separable
    if ":" in host:
        host = f"[{host}]"

    if port is not None and port not in DEFAULT_PORTS:
        return f"{host}:{port}"
    return host


def split_host_key(key: str) -> Tuple[str, int]:
    """Inverse of normalize_host_key: (host, port), port defaulting to 443."""
    t = (key or "").strip()
    if t.startswith("["):
        host, _, rest = t[1:].partition("]")
        port_s = rest[1:] if rest.startswith(":") else ""
    elif ":" in t:
        host, port_s = t.rsplit(":", 1)
    else:
        return t, 443
    try:
        return host.strip(), int(port_s.strip())
    except ValueError:
        return host.strip(), 443
