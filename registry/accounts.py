"""
Account registry — CA accounts that domains sign their CSRs with.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from errors import ConfigurationError

logger = logging.getLogger(__name__)


class Account(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    email: str = ""


class AccountRegistry:
    """Mapping of account id → Account.  Unknown or invalid ids are a ConfigurationError."""

    def __init__(
        self,
        accounts: Mapping[str, Account],
        invalid: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._accounts = dict(accounts)
        self.invalid: Dict[str, str] = dict(invalid or {})

    @classmethod
    def from_dict(cls, raw: Mapping[str, Mapping]) -> "AccountRegistry":
        accounts = {}
        invalid = {}
        for name, body in raw.items():
            try:
                accounts[name] = Account(name=name, **(body or {}))
            except (TypeError, ValueError) as exc:
                logger.error("Account %s rejected: %s", name, exc)
                invalid[name] = f"invalid account {name!r}: {exc}"
        return cls(accounts, invalid)

    def resolve(self, name: str) -> Account:
        if name in self.invalid:
            raise ConfigurationError(self.invalid[name])
        try:
            return self._accounts[name]
        except KeyError:
            raise ConfigurationError(f"unknown account {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._accounts

    def __iter__(self) -> Iterator[str]:
        return iter(self._accounts)

    def __len__(self) -> int:
        return len(self._accounts)
