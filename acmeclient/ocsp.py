"""
OCSP staple refresh.

The responder URI comes from the certificate's Authority Information Access
extension.  The request body is built by ``cryptography`` and POSTed with
``requests``; when a proxy is configured the connection goes to the proxy and
the request line keeps the responder's full URL, so the path is preserved.
The Host header is always set to the responder host.

The response is written with an atomic rename: readers see either the previous
staple or the new one, never a partial file.  Any failure leaves the existing
staple untouched and raises OcspRefreshError.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtensionOID

from errors import OcspRefreshError
from storage.atomic import atomic_write_bytes
from storage.filesystem import RESULT_MODE

logger = logging.getLogger(__name__)

OCSP_REQUEST_TYPE = "application/ocsp-request"
OCSP_RESPONSE_TYPE = "application/ocsp-response"


def responder_url(cert: x509.Certificate) -> str:
    """Return the first OCSP responder URI in the certificate's AIA extension."""
    try:
        aia = cert.extensions.get_extension_for_oid(ExtensionOID.AUTHORITY_INFORMATION_ACCESS).value
    except x509.ExtensionNotFound:
        raise OcspRefreshError("certificate has no Authority Information Access extension") from None
    for description in aia:
        if description.access_method == AuthorityInformationAccessOID.OCSP:
            return description.access_location.value
    raise OcspRefreshError("certificate names no OCSP responder")


def responder_host(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise OcspRefreshError(f"malformed OCSP responder URI {url!r}")
    return parts.netloc


def proxy_map(proxy: str) -> Optional[dict]:
    """Accept ``host:port`` or a full URL; empty means connect directly."""
    if not proxy:
        return None
    if "://" not in proxy:
        proxy = f"http://{proxy}"
    return {"http": proxy, "https": proxy}


def build_request(cert: x509.Certificate, issuer: x509.Certificate) -> bytes:
    builder = ocsp.OCSPRequestBuilder().add_certificate(cert, issuer, hashes.SHA1())
    return builder.build().public_bytes(serialization.Encoding.DER)


class OcspStapler:
    """Fetches OCSP responses and stores them as staple files."""

    def __init__(self, proxy: str = "", timeout: int = 30) -> None:
        self.proxies = proxy_map(proxy)
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": "acme-orchestrator/1.0"})

    def fetch(self, cert: x509.Certificate, issuer: x509.Certificate) -> bytes:
        """Return the raw DER response bytes for ``cert``."""
        url = responder_url(cert)
        host = responder_host(url)
        headers = {
            "Host": host,
            "Content-Type": OCSP_REQUEST_TYPE,
            "Accept": OCSP_RESPONSE_TYPE,
        }
        try:
            resp = self._session.post(
                url,
                data=build_request(cert, issuer),
                headers=headers,
                proxies=self.proxies,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OcspRefreshError(f"OCSP request to {url} failed: {exc}") from exc

        if resp.status_code != 200:
            raise OcspRefreshError(f"OCSP responder {url} returned HTTP {resp.status_code}")

        try:
            parsed = ocsp.load_der_ocsp_response(resp.content)
        except ValueError as exc:
            raise OcspRefreshError(f"unparseable OCSP response from {url}: {exc}") from exc
        if parsed.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
            raise OcspRefreshError(
                f"OCSP responder {url} answered {parsed.response_status.name}"
            )
        return resp.content

    def refresh(self, cert_path: Path, issuer_path: Path, staple_path: Path) -> int:
        """
        Refresh ``staple_path`` for the certificate at ``cert_path``.

        Returns the number of bytes written.
        """
        try:
            cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
            issuer = x509.load_pem_x509_certificate(issuer_path.read_bytes())
        except (OSError, ValueError) as exc:
            raise OcspRefreshError(f"cannot load certificate or issuer: {exc}") from exc

        data = self.fetch(cert, issuer)
        try:
            atomic_write_bytes(staple_path, data, mode=RESULT_MODE)
        except OSError as exc:
            raise OcspRefreshError(f"cannot write staple {staple_path}: {exc}") from exc
        logger.info("Wrote %d byte OCSP staple to %s", len(data), staple_path)
        return len(data)
