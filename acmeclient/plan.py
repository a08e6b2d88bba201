"""
Command plan builder — turns a domain's declared intent into the exact
argument vector for the external ACME client (acme.sh command line).

The plan is a list of arguments, never a shell string, so paths and alt names
need no quoting.  Everything global is passed in through PlanOptions; nothing
here reads the settings singleton.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Literal, Optional

from errors import UnsupportedChallengeTypeError
from registry.inventory import DomainRequest
from registry.profiles import DNS_01, HTTP_01, Profile
from storage.filesystem import ArtifactSet

Mode = Literal["issue", "renew"]

KEY_LENGTH = 4096
RENEW_VALIDITY_DAYS = 60
ACME_LOG_LEVEL = 2

# acme.sh convention: 2 = "skipped, not yet time to renew"
EXIT_OK = 0
EXIT_RENEW_SKIPPED = 2

ACCEPTED_EXIT_CODES: Dict[str, FrozenSet[int]] = {
    "issue": frozenset({EXIT_OK}),
    "renew": frozenset({EXIT_OK, EXIT_RENEW_SKIPPED}),
}

CA_SERVERS = {
    "production": "letsencrypt",
    "staging": "letsencrypt_test",
}


@dataclass(frozen=True)
class PlanOptions:
    """Process-wide values the builder needs, passed explicitly."""

    acme_sh: str
    acme_home: Path
    install_dir: Path
    log_file: str
    webroot: str
    ca_environment: str = "production"
    dns_sleep: int = 0
    timeout: int = 3600

    @classmethod
    def from_settings(cls, settings) -> "PlanOptions":
        return cls(
            acme_sh=settings.acme_sh_path,
            acme_home=Path(settings.ACME_HOME),
            install_dir=Path(settings.ACME_INSTALL_DIR),
            log_file=settings.ACME_LOG_FILE,
            webroot=settings.WEBROOT_PATH,
            ca_environment=settings.CA_ENVIRONMENT,
            dns_sleep=settings.DNS_SLEEP,
            timeout=settings.EXEC_TIMEOUT,
        )


@dataclass(frozen=True)
class InvocationSpec:
    domain: str
    mode: Mode
    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    accepted_exit_codes: FrozenSet[int] = frozenset({EXIT_OK})
    timeout: int = 3600
    cwd: Optional[Path] = None

    def accepts(self, exit_code: int) -> bool:
        return exit_code in self.accepted_exit_codes


def ca_environment(request: DomainRequest, options: PlanOptions) -> str:
    """Domain override first, then the process-wide environment."""
    return request.ca or options.ca_environment


def validation_args(profile: Profile, webroot: str, domain: Optional[str] = None) -> List[str]:
    if profile.challengetype == HTTP_01:
        return ["--webroot", webroot]
    if profile.challengetype == DNS_01:
        return ["--dns", f"dns_{profile.hook}"]
    raise UnsupportedChallengeTypeError(profile.challengetype, domain=domain)


def dns_sleep_args(profile: Profile, default_sleep: int) -> List[str]:
    """Profile value > global default > nothing (client polls on its own)."""
    if profile.dnssleep and profile.dnssleep > 0:
        return ["--dnssleep", str(profile.dnssleep)]
    if default_sleep and default_sleep > 0:
        return ["--dnssleep", str(default_sleep)]
    return []


def alias_args(profile: Profile) -> List[str]:
    mode = profile.alias_mode
    if mode == "challenge-alias":
        return ["--challenge-alias", profile.challenge_alias]
    if mode == "domain-alias":
        return ["--domain-alias", profile.domain_alias]
    return []


def build_plan(
    request: DomainRequest,
    profile: Profile,
    account_conf: Path,
    paths: ArtifactSet,
    mode: Mode,
    options: PlanOptions,
    env: Optional[Dict[str, str]] = None,
) -> InvocationSpec:
    """
    Build the invocation for one domain.

    Raises UnsupportedChallengeTypeError before anything is executed when the
    profile's challenge type cannot be mapped to a validation method.
    """
    domain = request.domain
    validation = validation_args(profile, options.webroot, domain=domain)

    argv: List[str] = [options.acme_sh]
    if mode == "issue":
        argv.append("--signcsr")
    else:
        argv += ["--renew", "--days", str(RENEW_VALIDITY_DAYS)]

    argv += ["--server", CA_SERVERS[ca_environment(request, options)]]
    argv += ["--domain", domain]
    for altname in request.altnames:
        argv += ["--domain", altname]
    argv += validation
    argv += ["--log", options.log_file, "--log-level", str(ACME_LOG_LEVEL)]
    argv += ["--home", str(options.acme_home)]
    argv += ["--keylength", str(KEY_LENGTH)]
    argv += ["--accountconf", str(account_conf)]
    if request.ocsp_must_staple:
        argv.append("--ocsp-must-staple")
    argv += [
        "--csr", str(paths.csr),
        "--cert-file", str(paths.cert),
        "--ca-file", str(paths.chain),
        "--fullchain-file", str(paths.fullchain),
    ]
    argv += alias_args(profile)
    if profile.challengetype == DNS_01:
        argv += dns_sleep_args(profile, options.dns_sleep)

    return InvocationSpec(
        domain=domain,
        mode=mode,
        argv=argv,
        env=dict(env or {}),
        accepted_exit_codes=ACCEPTED_EXIT_CODES[mode],
        timeout=options.timeout,
        cwd=options.install_dir,
    )
