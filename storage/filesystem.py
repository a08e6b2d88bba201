"""
Filesystem layout and helpers for the certificate lifecycle.

Layout (every root is configurable, see config.Settings):
  <csr_dir>/<domain>/cert.csr                     — CSR written by us (0640)
  <crt_dir>/<domain>/cert.pem                     — persisted leaf copy (0644)
  <crt_dir>/<domain>/chain.pem                    — CA chain
  <crt_dir>/<domain>/fullchain.pem                — cert + chain
  <crt_dir>/<domain>/cert.ocsp                    — OCSP staple
  <crt_dir>/<domain>/.lock                        — per-domain lock file (flock)
  <results_dir>/<domain>.pem                      — published certificate (0644)
  <results_dir>/<domain>.ca                       — published chain (0644)
  <acct_dir>/<account>/account_<ca_env>.conf      — external client account config
  <acme_home>/<domain>/<domain>.cer               — external client's own record;
                                                    its presence selects renew over issue

The external client owns <acme_home>; it also writes the three <crt_dir> files
it is told to via --cert-file/--ca-file/--fullchain-file, and publication
copies from those targets, never from <acme_home>.  The orchestrator
owns <results_dir> and the staple.
"""
from __future__ import annotations

import fcntl
import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from cryptography import x509

from errors import FilesystemError
from storage.atomic import atomic_copy, atomic_write_text

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
CSR_MODE = 0o640
RESULT_MODE = 0o644


@dataclass(frozen=True)
class ArtifactSet:
    csr: Path
    cert: Path
    chain: Path
    fullchain: Path
    staple: Path
    lock: Path
    tool_cert: Path
    result_cert: Path
    result_chain: Path


@dataclass(frozen=True)
class Layout:
    csr_dir: Path
    crt_dir: Path
    results_dir: Path
    acct_dir: Path
    acme_home: Path
    hook_dir: Path
    owner: Optional[str] = None
    group: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "Layout":
        return cls(
            csr_dir=Path(settings.CSR_DIR),
            crt_dir=Path(settings.CRT_DIR),
            results_dir=Path(settings.RESULTS_DIR),
            acct_dir=Path(settings.ACCT_DIR),
            acme_home=Path(settings.ACME_HOME),
            hook_dir=Path(settings.HOOK_DIR),
            owner=settings.SERVICE_USER or None,
            group=settings.SERVICE_GROUP or None,
        )

    def artifacts(self, domain: str) -> ArtifactSet:
        crt = self.crt_dir / domain
        tool = self.acme_home / domain
        return ArtifactSet(
            csr=self.csr_dir / domain / "cert.csr",
            cert=crt / "cert.pem",
            chain=crt / "chain.pem",
            fullchain=crt / "fullchain.pem",
            staple=crt / "cert.ocsp",
            lock=crt / ".lock",
            tool_cert=tool / f"{domain}.cer",
            result_cert=self.results_dir / f"{domain}.pem",
            result_chain=self.results_dir / f"{domain}.ca",
        )

    def account_conf(self, account: str, ca_env: str) -> Path:
        return self.acct_dir / account / f"account_{ca_env}.conf"


# ─── Directory / file preparation ─────────────────────────────────────────────


def ensure_dir(path: Path, layout: Layout, domain: Optional[str] = None) -> None:
    """Create ``path`` if absent (never fails when it already exists)."""
    try:
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, DIR_MODE)
        _chown(path, layout)
    except OSError as exc:
        raise FilesystemError(f"cannot prepare directory {path}: {exc}", domain=domain) from exc


def write_csr(path: Path, csr_pem: str, layout: Layout, domain: Optional[str] = None) -> bool:
    """
    Write the CSR only when its content changed.

    Rewriting identical content would bump the mtime and force a renewal on
    every cycle.  Returns True when the file was (re)written.
    """
    try:
        if path.exists() and path.read_text() == csr_pem:
            return False
        atomic_write_text(path, csr_pem, mode=CSR_MODE)
        _chown(path, layout)
    except OSError as exc:
        raise FilesystemError(f"cannot write CSR {path}: {exc}", domain=domain) from exc
    return True


def publish(src: Path, dst: Path, layout: Layout, domain: Optional[str] = None) -> bool:
    """
    Copy ``src`` over ``dst`` atomically with mode 0644.

    A missing ``src`` leaves ``dst`` untouched.  Returns True when ``dst``
    changed.
    """
    if not src.exists():
        logger.debug("%s: %s not produced in this run — keeping %s", domain, src, dst)
        return False
    try:
        changed = atomic_copy(src, dst, mode=RESULT_MODE)
        _chown(dst, layout)
    except OSError as exc:
        raise FilesystemError(f"cannot publish {src} to {dst}: {exc}", domain=domain) from exc
    return changed


def fix_mode(path: Path, layout: Layout, mode: int = RESULT_MODE) -> None:
    if path.exists():
        os.chmod(path, mode)
        _chown(path, layout)


@contextmanager
def domain_lock(path: Path, layout: Layout, domain: Optional[str] = None) -> Iterator[None]:
    """
    Hold an exclusive flock on ``path`` for the duration of the block.

    Separate processes (a cron-started ``--once`` and ``--ocsp``) block here
    until the other one is done with the domain.
    """
    ensure_dir(path.parent, layout, domain=domain)
    try:
        handle = open(path, "a")
    except OSError as exc:
        raise FilesystemError(f"cannot open lock file {path}: {exc}", domain=domain) from exc
    with handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


# ─── Certificate inspection ───────────────────────────────────────────────────


def load_cert(path: Path) -> x509.Certificate:
    """Load the first PEM certificate from ``path``."""
    return x509.load_pem_x509_certificate(path.read_bytes())


def parse_expiry(cert: x509.Certificate) -> datetime:
    """Return notAfter as a timezone-aware UTC datetime."""
    return cert.not_valid_after_utc


def remaining_seconds(cert: x509.Certificate, now: Optional[datetime] = None) -> float:
    """Seconds of validity left (negative once expired)."""
    now = now or datetime.now(tz=timezone.utc)
    return (parse_expiry(cert) - now).total_seconds()


def mtime(path: Path) -> float:
    return path.stat().st_mtime


# ─── Internal ──────────────────────────────────────────────────────────────────


def _chown(path: Path, layout: Layout) -> None:
    if layout.owner or layout.group:
        shutil.chown(path, user=layout.owner, group=layout.group)
