"""
Orchestrator — runs the lifecycle graph and OCSP refreshes for many domains.

  * Domains are resolved against the account/profile registries once, at
    construction.  A ConfigurationError drops only that domain.
  * One lock per domain, a thread lock plus an flock on the domain's lock
    file, serializes everything that writes its certificate, chain and
    staple files, also across processes.  Different domains run in parallel.
  * Errors are reported per domain and never stop other domains.
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

import structlog

from acmeclient.ocsp import OcspStapler
from acmeclient.plan import PlanOptions
from acmeclient.runner import AcmeShRunner
from agent.graph import build_graph, initial_state
from errors import ConfigurationError, FilesystemError, OcspRefreshError
from registry.accounts import Account
from registry.inventory import DomainRequest, Inventory
from registry.profiles import Profile, check_challenge
from storage.filesystem import Layout, domain_lock

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DomainJob:
    request: DomainRequest
    profile: Profile
    account: Account


@dataclass
class CycleReport:
    published: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    staples_refreshed: List[str] = field(default_factory=list)
    staples_failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def summary(self) -> str:
        def fmt(items: List[str]) -> str:
            return ", ".join(sorted(items)) or "none"

        return (
            f"published: {fmt(self.published)} | skipped: {fmt(self.skipped)} | "
            f"failed: {fmt(self.failed)} | staples refreshed: {fmt(self.staples_refreshed)} | "
            f"staples failed: {fmt(self.staples_failed)}"
        )


class Orchestrator:
    def __init__(
        self,
        inventory: Inventory,
        settings,
        runner: Optional[AcmeShRunner] = None,
        stapler: Optional[OcspStapler] = None,
        layout: Optional[Layout] = None,
        options: Optional[PlanOptions] = None,
    ) -> None:
        self.layout = layout or Layout.from_settings(settings)
        self.options = options or PlanOptions.from_settings(settings)
        self.runner = runner or AcmeShRunner(exec_path=settings.EXEC_PATH)
        self.stapler = stapler or OcspStapler(proxy=settings.PROXY, timeout=settings.OCSP_TIMEOUT)
        self.max_workers = settings.MAX_WORKERS

        self.jobs: Dict[str, DomainJob] = {}
        self.config_errors: Dict[str, str] = {}
        for domain, reason in inventory.invalid_domains.items():
            log.error("domain rejected", domain=domain, operation="parse", error=reason)
            self.config_errors[domain] = reason
        for domain, request in inventory.domains.items():
            try:
                self.jobs[domain] = self._resolve(request, inventory)
            except ConfigurationError as exc:
                log.error("domain rejected", domain=domain, operation="resolve", error=str(exc))
                self.config_errors[domain] = str(exc)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._graph = build_graph(self.runner, self.stapler, self.layout, self.options)

    @staticmethod
    def _resolve(request: DomainRequest, inventory: Inventory) -> DomainJob:
        domain = request.domain
        try:
            account = inventory.accounts.resolve(request.account)
            profile = inventory.profiles.resolve(request.profile)
        except ConfigurationError as exc:
            raise ConfigurationError(str(exc), domain=domain) from exc
        check_challenge(profile, domain=domain)
        return DomainJob(request=request, profile=profile, account=account)

    # ── Locking ───────────────────────────────────────────────────────────

    def lock_for(self, domain: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(domain)
            if lock is None:
                lock = self._locks[domain] = threading.Lock()
            return lock

    @contextmanager
    def domain_guard(self, domain: str) -> Iterator[None]:
        """Exclusive access to one domain's files, within and across processes."""
        with self.lock_for(domain):
            with domain_lock(self.layout.artifacts(domain).lock, self.layout, domain=domain):
                yield

    def _select(self, domains: Optional[Iterable[str]]) -> List[str]:
        if not domains:
            return sorted(self.jobs)
        selected = []
        for domain in domains:
            if domain in self.jobs:
                selected.append(domain)
            else:
                log.warning("domain not managed", domain=domain)
        return selected

    # ── Certificate lifecycle ─────────────────────────────────────────────

    def run_domain(self, domain: str) -> dict:
        """Run one lifecycle cycle for ``domain`` and return the final state."""
        job = self.jobs[domain]
        state = initial_state(job.request, job.profile, job.account, self.layout, self.options)
        with self.domain_guard(domain):
            return self._graph.invoke(state)

    def run_cycle(self, domains: Optional[Iterable[str]] = None) -> CycleReport:
        selected = self._select(domains)
        report = CycleReport(failed=sorted(self.config_errors) if not domains else [])
        if not selected:
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {domain: pool.submit(self.run_domain, domain) for domain in selected}

        for domain, future in futures.items():
            bound = log.bind(domain=domain)
            try:
                final = future.result()
            except ConfigurationError as exc:
                bound.error("run aborted", operation="plan", error=str(exc))
                report.failed.append(domain)
                report.errors.append(str(exc))
                continue
            except FilesystemError as exc:
                bound.error("run aborted", operation="lock", error=str(exc))
                report.failed.append(domain)
                report.errors.append(str(exc))
                continue
            except Exception as exc:
                bound.exception("run crashed", operation="lifecycle")
                report.failed.append(domain)
                report.errors.append(f"[{domain}] {exc}")
                continue
            self._record(report, domain, final)

        log.info("cycle complete", summary=report.summary())
        return report

    def _record(self, report: CycleReport, domain: str, final: dict) -> None:
        status = final.get("status")
        errors = final.get("error_log", [])
        report.errors.extend(errors)
        bound = log.bind(domain=domain, mode=final.get("mode"))
        if status == "failed":
            bound.error("lifecycle run failed", operation="lifecycle", errors=errors)
            report.failed.append(domain)
        elif final.get("skip"):
            report.skipped.append(domain)
        elif status == "published":
            bound.info("lifecycle run published", exit_code=final.get("exit_code"))
            report.published.append(domain)
            if final["request"].ocsp_must_staple:
                if final.get("staple_refreshed"):
                    report.staples_refreshed.append(domain)
                else:
                    bound.warning("staple not refreshed", operation="ocsp")
                    report.staples_failed.append(domain)

    # ── OCSP refresh ──────────────────────────────────────────────────────

    def refresh_staple(self, domain: str) -> bool:
        """Refresh one domain's staple.  Failures are logged, never raised."""
        paths = self.layout.artifacts(domain)
        bound = log.bind(domain=domain, operation="ocsp")
        try:
            with self.domain_guard(domain):
                if not paths.cert.exists() or not paths.chain.exists():
                    bound.info("no certificate yet — skipping staple refresh")
                    return False
                self.stapler.refresh(paths.cert, paths.chain, paths.staple)
        except (OcspRefreshError, FilesystemError) as exc:
            bound.warning("staple refresh failed", error=str(exc))
            return False
        return True

    def refresh_staples(self, domains: Optional[Iterable[str]] = None) -> CycleReport:
        selected = [d for d in self._select(domains) if self.jobs[d].request.ocsp_must_staple]
        report = CycleReport()
        if not selected:
            return report
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = dict(zip(selected, pool.map(self.refresh_staple, selected)))
        for domain, ok in results.items():
            (report.staples_refreshed if ok else report.staples_failed).append(domain)
        log.info("ocsp refresh complete", summary=report.summary())
        return report
