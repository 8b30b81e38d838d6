"""Shared fixtures: result stores, fake probes and a throwaway CA for TLS tests."""

from __future__ import annotations

import datetime
import socket
import ssl
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from config import ScanOptions
from db import ResultStore
from runner import ScanCoordinator
from scanner import Status


class FakeProbe:
    """Records probe calls and answers from a verdict table (default failing)."""

    def __init__(self, verdicts: Optional[Dict[str, Status]] = None) -> None:
        self.verdicts = verdicts or {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, host: str, port: int, timeout: float, cafile: Optional[str] = None) -> Status:
        key = host if port == 443 else f"{host}:{port}"
        with self._lock:
            self.calls.append(key)
        return self.verdicts.get(key, Status.FAILING)


@pytest.fixture
def store(tmp_path: Path) -> ResultStore:
    return ResultStore(str(tmp_path / "results.db"))


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small Drupal-like tree with PHP and Python sources."""
    root = tmp_path / "site"
    (root / "modules" / "custom").mkdir(parents=True)
    (root / "themes").mkdir()
    (root / "modules" / "custom" / "api.php").write_text(
        "<?php\n"
        "$a = 'https://good.example.com/a';\n"
        "$b = \"http://192.168.1.1/b\";\n"
        "$c = 'https://localhost/c';\n"
        "// $d = 'https://commented.example.com/';\n"
        "$e = 'https://www.Legacy.example.org:8443/x';\n",
        encoding="utf-8",
    )
    (root / "themes" / "client.py").write_text(
        'URL = "https://api.example.net/v1"\n'
        "# OLD = 'https://old.example.net'\n",
        encoding="utf-8",
    )
    return root


def make_coordinator(
    store: ResultStore,
    base_dir: Path,
    probe: FakeProbe,
    **kwargs,
) -> ScanCoordinator:
    options = ScanOptions(base_dir=str(base_dir), **kwargs)
    return ScanCoordinator(store, options=options, probe=probe)


# -----------------------------
# Local TLS servers
# -----------------------------

def _name(cn: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])


def _write_key(path: Path, key) -> None:
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


def _issue(subject_cn: str, issuer_cn: str, public_key, signing_key, is_ca: bool) -> x509.Certificate:
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn))
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()), critical=False
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=not is_ca,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=is_ca,
                crl_sign=is_ca,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    )
    if not is_ca:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False
        ).add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    return builder.sign(signing_key, hashes.SHA256())


class TLSPki:
    """A test CA plus a CA-issued and a self-signed certificate for localhost."""

    def __init__(self, directory: Path) -> None:
        ca_key = ec.generate_private_key(ec.SECP256R1())
        ca_cert = _issue("tls-checker test CA", "tls-checker test CA", ca_key.public_key(), ca_key, True)
        self.ca_file = directory / "ca.pem"
        self.ca_file.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))

        leaf_key = ec.generate_private_key(ec.SECP256R1())
        leaf = _issue("localhost", "tls-checker test CA", leaf_key.public_key(), ca_key, False)
        self.cert_file = directory / "leaf.pem"
        self.key_file = directory / "leaf.key"
        self.cert_file.write_bytes(leaf.public_bytes(serialization.Encoding.PEM))
        _write_key(self.key_file, leaf_key)

        self_key = ec.generate_private_key(ec.SECP256R1())
        self_signed = _issue("localhost", "localhost", self_key.public_key(), self_key, False)
        self.self_signed_cert = directory / "self.pem"
        self.self_signed_key = directory / "self.key"
        self.self_signed_cert.write_bytes(self_signed.public_bytes(serialization.Encoding.PEM))
        _write_key(self.self_signed_key, self_key)


class TLSServer:
    """Accepts connections on 127.0.0.1 and completes (or fails) TLS handshakes."""

    def __init__(self, ctx: ssl.SSLContext) -> None:
        self.ctx = ctx
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(8)
        self.sock.settimeout(0.2)
        self.port = self.sock.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except OSError:
                continue
            conn.settimeout(5)
            try:
                with self.ctx.wrap_socket(conn, server_side=True) as tls:
                    try:
                        tls.recv(1)
                    except (ssl.SSLError, OSError):
                        pass
            except (ssl.SSLError, OSError):
                conn.close()

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self.sock.close()


@pytest.fixture(scope="session")
def pki(tmp_path_factory: pytest.TempPathFactory) -> TLSPki:
    return TLSPki(tmp_path_factory.mktemp("pki"))


def _server_context(cert: Path, key: Path) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(str(cert), str(key))
    return ctx


@pytest.fixture
def tls13_server(pki: TLSPki) -> Iterator[TLSServer]:
    ctx = _server_context(pki.cert_file, pki.key_file)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_3
    server = TLSServer(ctx)
    yield server
    server.close()


@pytest.fixture
def tls10_server(pki: TLSPki) -> Iterator[TLSServer]:
    ctx = _server_context(pki.cert_file, pki.key_file)
    ctx.minimum_version = ssl.TLSVersion.TLSv1
    ctx.maximum_version = ssl.TLSVersion.TLSv1
    server = TLSServer(ctx)
    yield server
    server.close()


@pytest.fixture
def self_signed_server(pki: TLSPki) -> Iterator[TLSServer]:
    server = TLSServer(_server_context(pki.self_signed_cert, pki.self_signed_key))
    yield server
    server.close()
