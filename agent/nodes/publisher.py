"""
result_publisher node — copy the freshly written certificate and chain to the
published location.

  <crt_dir>/<domain>/cert.pem   → <results_dir>/<domain>.pem
  <crt_dir>/<domain>/chain.pem  → <results_dir>/<domain>.ca

A source the client did not produce this run (e.g. a renew that exited 2)
leaves the published file untouched.
"""
from __future__ import annotations

import logging

from agent.state import DomainState
from errors import FilesystemError
from storage import filesystem as fs

logger = logging.getLogger(__name__)


def result_publisher(state: DomainState, layout: fs.Layout) -> dict:
    """Invoking → Published."""
    domain = state["domain"]
    paths = state["paths"]
    changed: list[str] = []

    try:
        for src, dst in ((paths.cert, paths.result_cert), (paths.chain, paths.result_chain)):
            if fs.publish(src, dst, layout, domain=domain):
                changed.append(str(dst))
        for persisted in (paths.cert, paths.chain, paths.fullchain):
            fs.fix_mode(persisted, layout)
    except (FilesystemError, OSError) as exc:
        error = str(exc) if isinstance(exc, FilesystemError) else f"[{domain}] publish failed: {exc}"
        logger.error(error)
        return {"status": "failed", "error_log": state.get("error_log", []) + [error]}

    if changed:
        logger.info("Published %s for %s", ", ".join(changed), domain)
    else:
        logger.info("Published files for %s unchanged", domain)
    return {"status": "published", "published": changed}
