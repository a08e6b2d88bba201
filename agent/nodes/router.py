"""
Routing functions for graph.add_conditional_edges().

These are not nodes; each one looks at the state after a node and names the
edge to follow.
"""
from __future__ import annotations

from agent.state import DomainState


def prepare_router(state: DomainState) -> str:
    """Returns: "prepared" | "failed" """
    return "failed" if state.get("status") == "failed" else "prepared"


def scan_router(state: DomainState) -> str:
    """Returns: "skip" | "act" """
    return "skip" if state.get("skip") else "act"


def invoke_router(state: DomainState) -> str:
    """Returns: "succeeded" | "failed" """
    return "failed" if state.get("status") == "failed" else "succeeded"


def publish_router(state: DomainState) -> str:
    """
    Returns:
      "staple" — published and the certificate is must-staple
      "done"   — nothing more to do this cycle
    """
    if state.get("status") != "published":
        return "done"
    return "staple" if state["request"].ocsp_must_staple else "done"
