"""
LangGraph StateGraph builder for one domain's lifecycle run.

Graph topology:
  START
    → csr_preparer
    → [conditional: failed → END]
    → certificate_scanner
    → [conditional: skip → END]
    → invocation_planner
    → acme_invoker
    → [conditional: failed → END]
    → result_publisher
    → [conditional: staple → staple_refresher → END]
                    done   → END

The graph carries no per-domain data of its own; one compiled graph is shared
by every domain and invoked once per domain per tick.  Collaborators (runner,
stapler, layout, plan options) are bound into the nodes here rather than read
from the settings singleton.
"""
from __future__ import annotations

from functools import partial

from langgraph.graph import END, START, StateGraph

from acmeclient.ocsp import OcspStapler
from acmeclient.plan import PlanOptions, ca_environment
from acmeclient.runner import AcmeShRunner
from agent.nodes.invoker import acme_invoker
from agent.nodes.planner import invocation_planner
from agent.nodes.prepare import csr_preparer
from agent.nodes.publisher import result_publisher
from agent.nodes.router import invoke_router, prepare_router, publish_router, scan_router
from agent.nodes.scanner import certificate_scanner
from agent.nodes.stapler import staple_refresher
from agent.state import DomainState
from registry.accounts import Account
from registry.inventory import DomainRequest
from registry.profiles import Profile
from storage.filesystem import Layout


def build_graph(
    runner: AcmeShRunner,
    stapler: OcspStapler,
    layout: Layout,
    options: PlanOptions,
):
    """
    Build and compile the per-domain lifecycle StateGraph.

    Returns:
        CompiledGraph ready to invoke.
    """
    builder = StateGraph(DomainState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("csr_preparer", partial(csr_preparer, layout=layout))
    builder.add_node("certificate_scanner", certificate_scanner)
    builder.add_node("invocation_planner", partial(invocation_planner, layout=layout, options=options))
    builder.add_node("acme_invoker", partial(acme_invoker, runner=runner))
    builder.add_node("result_publisher", partial(result_publisher, layout=layout))
    builder.add_node("staple_refresher", partial(staple_refresher, stapler=stapler))

    # ── Edges ─────────────────────────────────────────────────────────────
    builder.add_edge(START, "csr_preparer")
    builder.add_conditional_edges(
        "csr_preparer",
        prepare_router,
        {"prepared": "certificate_scanner", "failed": END},
    )
    builder.add_conditional_edges(
        "certificate_scanner",
        scan_router,
        {"act": "invocation_planner", "skip": END},
    )
    builder.add_edge("invocation_planner", "acme_invoker")
    builder.add_conditional_edges(
        "acme_invoker",
        invoke_router,
        {"succeeded": "result_publisher", "failed": END},
    )
    builder.add_conditional_edges(
        "result_publisher",
        publish_router,
        {"staple": "staple_refresher", "done": END},
    )
    builder.add_edge("staple_refresher", END)

    return builder.compile()


def initial_state(
    request: DomainRequest,
    profile: Profile,
    account: Account,
    layout: Layout,
    options: PlanOptions,
) -> dict:
    """Build the initial DomainState dict for one run."""
    ca_env = ca_environment(request, options)
    return {
        "domain": request.domain,
        "request": request,
        "profile": profile,
        "account": account,
        "paths": layout.artifacts(request.domain),
        "account_conf": str(layout.account_conf(account.name, ca_env)),
        "status": "idle",
        "csr_changed": False,
        "skip": False,
        "mode": None,
        "plan": None,
        "exit_code": None,
        "published": [],
        "staple_refreshed": False,
        "error_log": [],
    }
