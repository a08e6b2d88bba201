"""
staple_refresher node — refresh the OCSP staple right after a successful run.
"""
from __future__ import annotations

import logging

from acmeclient.ocsp import OcspStapler
from agent.state import DomainState
from errors import OcspRefreshError

logger = logging.getLogger(__name__)


def staple_refresher(state: DomainState, stapler: OcspStapler) -> dict:
    """Never fails the run: a stale staple is retried on the next OCSP tick."""
    domain = state["domain"]
    paths = state["paths"]
    try:
        stapler.refresh(paths.cert, paths.chain, paths.staple)
    except OcspRefreshError as exc:
        error = f"[{domain}] OCSP refresh failed: {exc}"
        logger.warning(error)
        return {
            "staple_refreshed": False,
            "error_log": state.get("error_log", []) + [error],
        }
    return {"staple_refreshed": True}
