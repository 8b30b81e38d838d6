# backend/scanner.py
from __future__ import annotations

import logging
import socket
import ssl
import urllib.error
import urllib.request
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from cryptography import x509

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
USER_AGENT = "tls-checker/1.0"


class Status(str, Enum):
    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"


def _utc_iso(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def make_probe_context(cafile: Optional[str] = None) -> ssl.SSLContext:
    """Client context that only negotiates TLS 1.2/1.3 and always verifies the peer."""
    ctx = ssl.create_default_context()
    if cafile:
        ctx.load_verify_locations(cafile=cafile)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _leaf_facts(cert_der: Optional[bytes]) -> Dict[str, Any]:
    if not cert_der:
        return {}
    try:
        cert = x509.load_der_x509_certificate(cert_der)
    except ValueError:
        return {}
    not_after = getattr(cert, "not_valid_after_utc", None) or cert.not_valid_after
    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "not_after": _utc_iso(not_after),
    }


def probe_host(
    host: str,
    port: int = 443,
    timeout: float = DEFAULT_TIMEOUT,
    cafile: Optional[str] = None,
) -> Dict[str, Any]:
    facts: Dict[str, Any] = {
        "host": host,
        "port": port,
        "status": Status.FAILING,
        "error": "",
        "tls_version": "",
        "cipher_name": "",
        "subject": "",
        "issuer": "",
        "not_after": "",
    }

    try:
        ctx = make_probe_context(cafile)
        with socket.create_connection((host, port), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=host) as ssock:
                facts["tls_version"] = ssock.version() or ""
                c = ssock.cipher()
                if c:
                    facts["cipher_name"] = c[0] or ""
                facts.update(_leaf_facts(ssock.getpeercert(binary_form=True)))
                facts["status"] = Status.PASSING
    except ssl.SSLCertVerificationError as e:
        facts["error"] = f"certificate verification failed: {e.verify_message or e}"
    except ssl.SSLError as e:
        facts["error"] = f"handshake failed: {e}"
    except socket.timeout:
        facts["error"] = f"timed out after {timeout}s"
    except OSError as e:
        # refused, unreachable, DNS failure
        facts["error"] = str(e) or e.__class__.__name__
    except ValueError as e:
        # unencodable hostname
        facts["error"] = str(e)

    if facts["status"] is Status.FAILING:
        logger.warning("TLS check failed for %s:%s: %s", host, port, facts["error"] or "unknown error")
    else:
        logger.debug(
            "TLS check passed for %s:%s (%s, %s, expires %s)",
            host, port, facts["tls_version"], facts["cipher_name"], facts["not_after"] or "?",
        )
    return facts


def probe(
    host: str,
    port: int = 443,
    timeout: float = DEFAULT_TIMEOUT,
    cafile: Optional[str] = None,
) -> Status:
    """PASSING when a verified TLS 1.2+ handshake completes, FAILING otherwise."""
    return probe_host(host, port, timeout=timeout, cafile=cafile)["status"]


def check_reachability(host_key: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """GET https://<host_key>/ following redirects; any status below 400 counts as reachable."""
    url = f"https://{host_key}/"
    req = urllib.request.Request(url, method="GET", headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            code = getattr(resp, "status", None) or resp.getcode()
            return int(code) < 400
    except urllib.error.HTTPError as e:
        logger.info("Reachability check for %s returned HTTP %s", host_key, e.code)
        return False
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.info("Reachability check for %s failed: %s", host_key, e)
        return False
