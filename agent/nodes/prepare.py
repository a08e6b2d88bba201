"""
csr_preparer node — make sure the domain's directories exist and the CSR on
disk matches the declared one.
"""
from __future__ import annotations

import logging

from agent.state import DomainState
from errors import FilesystemError
from storage import filesystem as fs
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)


def csr_preparer(state: DomainState, layout: fs.Layout) -> dict:
    """
    Idle → Prepared.

    Directories are created with 0755 when absent; the CSR (0640) and any hook
    key files are only rewritten when their content changed.
    """
    domain = state["domain"]
    paths = state["paths"]
    profile = state["profile"]

    try:
        fs.ensure_dir(paths.csr.parent, layout, domain=domain)
        fs.ensure_dir(paths.cert.parent, layout, domain=domain)
        fs.ensure_dir(layout.results_dir, layout, domain=domain)
        changed = fs.write_csr(paths.csr, state["request"].csr, layout, domain=domain)

        hook = profile.hook_parameters(layout.hook_dir)
        for path, content in hook.files.items():
            if path.exists() and path.read_text() == content:
                continue
            fs.ensure_dir(path.parent, layout, domain=domain)
            atomic_write_text(path, content, mode=fs.CSR_MODE)
    except FilesystemError as exc:
        logger.error("%s", exc)
        return {"status": "failed", "error_log": state.get("error_log", []) + [str(exc)]}
    except OSError as exc:
        error = f"[{domain}] cannot write hook files: {exc}"
        logger.error(error)
        return {"status": "failed", "error_log": state.get("error_log", []) + [error]}

    if changed:
        logger.info("CSR for %s written to %s", domain, paths.csr)
    return {"status": "prepared", "csr_changed": changed}
