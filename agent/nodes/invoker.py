"""
acme_invoker node — run the external client and record the outcome.
"""
from __future__ import annotations

import logging

from acmeclient.runner import AcmeShRunner
from agent.state import DomainState
from errors import InvocationError

logger = logging.getLogger(__name__)


def acme_invoker(state: DomainState, runner: AcmeShRunner) -> dict:
    """
    Invoking → (publish) or Failed.

    A failure leaves every published file as it was.
    """
    plan = state["plan"]
    try:
        result = runner.run(plan)
    except InvocationError as exc:
        logger.error("%s", exc)
        if exc.output:
            logger.debug("client output for %s:\n%s", state["domain"], exc.output)
        return {
            "status": "failed",
            "exit_code": exc.exit_code,
            "error_log": state.get("error_log", []) + [str(exc)],
        }
    return {"exit_code": result.exit_code}
