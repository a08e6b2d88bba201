"""
Inventory loader — the materialized output of whatever declares domains,
profiles and accounts.

Expected JSON shape:

    {
      "accounts": {"ops": {"email": "ops@example.com"}},
      "profiles": {
        "web":  {"challengetype": "http-01"},
        "dns":  {"challengetype": "dns-01", "hook": "nsupdate",
                 "options": {"nsupdate_id": "...", "nsupdate_key": "...",
                             "nsupdate_type": "hmac-sha512"}}
      },
      "domains": {
        "example.com": {"csr": "-----BEGIN CERTIFICATE REQUEST-----...",
                        "account": "ops", "profile": "web",
                        "altnames": ["www.example.com"]}
      }
    }
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from config import CaEnvironment
from errors import ConfigurationError
from registry.accounts import AccountRegistry
from registry.profiles import ProfileRegistry

logger = logging.getLogger(__name__)


class DomainRequest(BaseModel):
    """One declared domain.  Only ``csr`` is expected to change between loads."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    domain: str
    csr: str
    account: str
    profile: str
    renew_days: int
    ocsp_must_staple: bool = True
    altnames: List[str] = []
    ca: Optional[CaEnvironment] = None


@dataclass
class Inventory:
    accounts: AccountRegistry
    profiles: ProfileRegistry
    domains: Dict[str, DomainRequest]
    # domain → reason, for declarations that could not be parsed
    invalid_domains: Dict[str, str] = field(default_factory=dict)


def parse_inventory(raw: dict, default_renew_days: int) -> Inventory:
    """
    Build registries and domain requests from an already-decoded document.

    A malformed profile, account or domain entry is recorded, not raised:
    only the domains it affects are rejected later by the orchestrator.
    """
    accounts = AccountRegistry.from_dict(raw.get("accounts") or {})
    profiles = ProfileRegistry.from_dict(raw.get("profiles") or {})

    domains: Dict[str, DomainRequest] = {}
    invalid: Dict[str, str] = {}
    for name, body in (raw.get("domains") or {}).items():
        try:
            body = dict(body)
            body.setdefault("renew_days", default_renew_days)
            domains[name] = DomainRequest(domain=name, **body)
        except (TypeError, ValueError) as exc:
            error = ConfigurationError(f"invalid domain declaration: {exc}", domain=name)
            logger.error("%s", error)
            invalid[name] = str(error)

    logger.info(
        "Inventory: %d domain(s), %d profile(s), %d account(s), %d rejected",
        len(domains), len(profiles), len(accounts),
        len(invalid) + len(profiles.invalid) + len(accounts.invalid),
    )
    return Inventory(accounts=accounts, profiles=profiles, domains=domains, invalid_domains=invalid)


def load_inventory(path: str | Path, default_renew_days: int) -> Inventory:
    path = Path(path)
    try:
        raw = json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError(f"inventory {path} not found") from None
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"inventory {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"inventory {path} must be a JSON object")
    return parse_inventory(raw, default_renew_days)
