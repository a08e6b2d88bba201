"""
Profile registry — challenge configuration shared by many domains.

A profile names exactly one challenge type.  Hook options are turned into the
environment the external client runs with; ``env`` entries declared on the
profile always win over hook-derived values.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from errors import ConfigurationError, UnsupportedChallengeTypeError

logger = logging.getLogger(__name__)

HTTP_01 = "http-01"
DNS_01 = "dns-01"
SUPPORTED_CHALLENGE_TYPES = frozenset({HTTP_01, DNS_01})

# Sub-fields the nsupdate hook needs to produce a TSIG key file.
NSUPDATE_REQUIRED = ("nsupdate_id", "nsupdate_key", "nsupdate_type")

AliasMode = Literal["challenge-alias", "domain-alias", "none"]


@dataclass
class HookParameters:
    """Environment for the external client plus any files it expects to read."""

    env: Dict[str, str] = field(default_factory=dict)
    files: Dict[Path, str] = field(default_factory=dict)


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    challengetype: str
    hook: str = ""
    options: Dict[str, str] = {}
    env: Dict[str, str] = {}
    dnssleep: int = 0
    challenge_alias: Optional[str] = None
    domain_alias: Optional[str] = None

    @field_validator("options", "env", mode="before")
    @classmethod
    def stringify(cls, v: object) -> object:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @property
    def alias_mode(self) -> AliasMode:
        if self.challenge_alias:
            return "challenge-alias"
        if self.domain_alias:
            return "domain-alias"
        return "none"

    def hook_parameters(self, hook_dir: Path) -> HookParameters:
        """
        Resolve the hook environment.

        Missing required sub-fields yield no hook-derived values rather than an
        error; the declared ``env`` overrides are still applied.
        """
        params = HookParameters()
        if self.challengetype == DNS_01 and self.hook:
            if self.hook == "nsupdate":
                params = self._nsupdate_parameters(hook_dir)
            else:
                params.env = {k.upper(): v for k, v in self.options.items()}
        params.env.update(self.env)
        return params

    def _nsupdate_parameters(self, hook_dir: Path) -> HookParameters:
        missing = [k for k in NSUPDATE_REQUIRED if not self.options.get(k)]
        if missing:
            logger.warning(
                "Profile %s: nsupdate hook missing %s — running without hook parameters",
                self.name,
                ", ".join(missing),
            )
            return HookParameters()

        keyfile = hook_dir / f"{self.name}.nsupdate.key"
        content = (
            f'key "{self.options["nsupdate_id"]}" {{\n'
            f'  algorithm {self.options["nsupdate_type"]};\n'
            f'  secret "{self.options["nsupdate_key"]}";\n'
            "};\n"
        )
        env = {"NSUPDATE_KEY": str(keyfile)}
        if self.options.get("nsupdate_server"):
            env["NSUPDATE_SERVER"] = self.options["nsupdate_server"]
        if self.options.get("nsupdate_zone"):
            env["NSUPDATE_ZONE"] = self.options["nsupdate_zone"]
        return HookParameters(env=env, files={keyfile: content})


def check_challenge(profile: Profile, domain: Optional[str] = None) -> None:
    """Raise UnsupportedChallengeTypeError / ConfigurationError for unusable profiles."""
    if profile.challengetype not in SUPPORTED_CHALLENGE_TYPES:
        raise UnsupportedChallengeTypeError(profile.challengetype, domain=domain)
    if profile.challengetype == DNS_01 and not profile.hook:
        raise ConfigurationError(f"profile {profile.name!r}: dns-01 requires a hook", domain=domain)


class ProfileRegistry:
    """
    Mapping of profile name → Profile.

    Entries that fail validation are kept in ``invalid`` with their reason.
    Resolving one raises ConfigurationError, so only the domains that use it
    are rejected.  Challenge-type support is checked per domain
    (see ``check_challenge``).
    """

    def __init__(
        self,
        profiles: Mapping[str, Profile],
        invalid: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._profiles = dict(profiles)
        self.invalid: Dict[str, str] = dict(invalid or {})

    @classmethod
    def from_dict(cls, raw: Mapping[str, Mapping]) -> "ProfileRegistry":
        profiles = {}
        invalid = {}
        for name, body in raw.items():
            try:
                profiles[name] = Profile(name=name, **body)
            except (TypeError, ValueError) as exc:
                logger.error("Profile %s rejected: %s", name, exc)
                invalid[name] = f"invalid profile {name!r}: {exc}"
        return cls(profiles, invalid)

    def resolve(self, name: str) -> Profile:
        if name in self.invalid:
            raise ConfigurationError(self.invalid[name])
        try:
            return self._profiles[name]
        except KeyError:
            raise ConfigurationError(f"unknown profile {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)
