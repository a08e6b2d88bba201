"""
certificate_scanner node — decide whether the domain needs the external
client at all, and if so whether to issue or renew.
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from agent.state import DomainState
from storage import filesystem as fs

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def should_skip(
    cert_path: Path,
    csr_path: Path,
    renew_days: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    True only when all of these hold:
      - a certificate exists at cert_path and can be parsed
      - its remaining validity exceeds renew_days
      - it was modified strictly after the CSR

    A CSR touched after the last issuance means "re-issue", even if the
    certificate is far from expiry.  Only mtimes are compared, not contents.
    """
    if not cert_path.exists():
        return False
    try:
        cert = fs.load_cert(cert_path)
    except (OSError, ValueError) as exc:
        logger.warning("Cannot parse %s (%s) — treating as absent", cert_path, exc)
        return False

    if fs.remaining_seconds(cert, now) <= renew_days * SECONDS_PER_DAY:
        return False

    try:
        return fs.mtime(cert_path) > fs.mtime(csr_path)
    except FileNotFoundError:
        return False


def select_mode(tool_cert_path: Path) -> str:
    """issue when the external client has never produced a certificate, else renew."""
    return "renew" if tool_cert_path.exists() else "issue"


def certificate_scanner(state: DomainState) -> dict:
    domain = state["domain"]
    paths = state["paths"]
    renew_days = state["request"].renew_days

    if should_skip(paths.cert, paths.csr, renew_days):
        expiry = fs.parse_expiry(fs.load_cert(paths.cert))
        logger.info("  %s → expires %s — OK, nothing to do", domain, expiry.strftime("%Y-%m-%d"))
        return {"skip": True, "status": "idle"}

    mode = select_mode(paths.tool_cert)
    logger.info("  %s → action required (%s)", domain, mode)
    return {"skip": False, "mode": mode}
