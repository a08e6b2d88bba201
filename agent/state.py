"""
Per-domain state for the lifecycle graph.

One DomainState flows through one graph run for one domain.  Nothing in it is
shared with other domains, so runs for different domains can proceed in
parallel.

Status moves idle → prepared → invoking → published and ends the cycle there,
or ends in failed.  A skipped domain goes back to idle without any external
call.  No retry state survives a run: the next tick starts from scratch.
"""
from __future__ import annotations

from typing import List, Literal, Optional

from typing_extensions import TypedDict

from acmeclient.plan import InvocationSpec
from registry.accounts import Account
from registry.inventory import DomainRequest
from registry.profiles import Profile
from storage.filesystem import ArtifactSet

Status = Literal["idle", "prepared", "invoking", "published", "failed"]


class DomainState(TypedDict):
    # ── Inputs (resolved before the run) ───────────────────────────────────
    domain: str
    request: DomainRequest
    profile: Profile
    account: Account
    paths: ArtifactSet
    account_conf: str

    # ── Progress ───────────────────────────────────────────────────────────
    status: Status
    csr_changed: bool
    skip: bool
    mode: Optional[str]               # issue | renew
    plan: Optional[InvocationSpec]
    exit_code: Optional[int]
    published: List[str]              # result paths that changed this run
    staple_refreshed: bool
    error_log: List[str]
