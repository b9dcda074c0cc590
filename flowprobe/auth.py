# flowprobe/auth.py
"""
Credential resolution for steps.

* basic / bearer credentials become an Authorization header
* client certificates are loaded into an ``ssl.SSLContext`` for HTTP
* TLS material for gRPC is returned as raw PEM bytes
"""

from __future__ import annotations

import base64
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Optional

from flowprobe.errors import CredentialError
from flowprobe.files import try_file
from flowprobe.models import ClientCertificate, Credential, TLSMaterial

logger = logging.getLogger(__name__)


def get_auth_header(credential: Optional[Credential]) -> Optional[str]:
    """Authorization header value for basic or bearer credentials."""
    if credential is None:
        return None
    if credential.basic:
        raw = f"{credential.basic.username}:{credential.basic.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")
    if credential.bearer:
        return f"Bearer {credential.bearer.token}"
    return None


def _load_cert_chain(ctx: ssl.SSLContext, cert: bytes, key: Optional[bytes], passphrase: Optional[str]) -> None:
    # ssl only loads certificate chains from disk
    paths = []
    try:
        for material in (cert, key):
            if material is None:
                paths.append(None)
                continue
            fd, path = tempfile.mkstemp(suffix=".pem")
            with os.fdopen(fd, "wb") as f:
                f.write(material)
            paths.append(path)
        ctx.load_cert_chain(paths[0], keyfile=paths[1], password=passphrase)
    except (OSError, ssl.SSLError) as e:
        raise CredentialError(f"Cannot load client certificate: {e}") from e
    finally:
        for path in paths:
            if path:
                os.unlink(path)


def build_ssl_context(
    reject_unauthorized: bool,
    certificate: Optional[ClientCertificate] = None,
    workflow_path: Optional[str] = None,
) -> ssl.SSLContext:
    """SSL context for an HTTP step, optionally presenting a client certificate."""
    ctx = ssl.create_default_context()
    if not reject_unauthorized:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE

    if certificate and certificate.cert:
        cert = try_file(certificate.cert, workflow_path)
        key = try_file(certificate.key, workflow_path)
        _load_cert_chain(ctx, cert, key, certificate.passphrase)
        logger.debug("Client certificate loaded")

    return ctx


@dataclass(frozen=True)
class TLSCredentials:
    root_certs: Optional[bytes] = None
    private_key: Optional[bytes] = None
    cert_chain: Optional[bytes] = None


def get_tls_credentials(tls: Optional[TLSMaterial], workflow_path: Optional[str] = None) -> Optional[TLSCredentials]:
    """PEM material for gRPC channels."""
    if tls is None:
        return None
    try:
        return TLSCredentials(
            root_certs=try_file(tls.root_certs, workflow_path),
            private_key=try_file(tls.private_key, workflow_path),
            cert_chain=try_file(tls.cert_chain, workflow_path),
        )
    except OSError as e:
        raise CredentialError(f"Cannot read TLS material: {e}") from e
