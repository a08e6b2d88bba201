"""
invocation_planner node — build the external client invocation for the
selected mode.
"""
from __future__ import annotations

import logging
from pathlib import Path

from acmeclient.plan import PlanOptions, build_plan
from agent.state import DomainState
from storage.filesystem import Layout

logger = logging.getLogger(__name__)


def invocation_planner(state: DomainState, layout: Layout, options: PlanOptions) -> dict:
    """
    Prepared → Invoking.

    ConfigurationError (e.g. UnsupportedChallengeTypeError) is not caught here:
    it aborts this domain's run before anything is executed.
    """
    profile = state["profile"]
    hook = profile.hook_parameters(layout.hook_dir)

    plan = build_plan(
        request=state["request"],
        profile=profile,
        account_conf=Path(state["account_conf"]),
        paths=state["paths"],
        mode=state["mode"],
        options=options,
        env=hook.env,
    )
    logger.debug("Plan for %s: %s", state["domain"], plan.argv)
    return {"plan": plan, "status": "invoking"}
