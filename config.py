"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``www.example.com,mail.example.com`` is not valid JSON, so the
    raw string is handed to the field_validator which splits it on commas.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


CaEnvironment = Literal["production", "staging"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Filesystem layout ──────────────────────────────────────────────────
    # Empty sub-directories are derived from BASE_DIR.
    BASE_DIR: str = "/etc/acme"
    CSR_DIR: str = ""
    CRT_DIR: str = ""
    RESULTS_DIR: str = ""
    ACCT_DIR: str = ""
    ACME_HOME: str = ""
    HOOK_DIR: str = ""

    # ── External ACME client ───────────────────────────────────────────────
    ACME_INSTALL_DIR: str = "/opt/acme.sh"
    ACME_LOG_FILE: str = ""
    WEBROOT_PATH: str = "/var/www/acme"
    CA_ENVIRONMENT: CaEnvironment = "production"
    EXEC_TIMEOUT: int = 3600
    EXEC_PATH: str = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

    # ── Renewal policy ─────────────────────────────────────────────────────
    RENEW_DAYS: int = 30
    DNS_SLEEP: int = 0

    # ── OCSP ───────────────────────────────────────────────────────────────
    PROXY: str = ""               # host:port or URL; empty = direct connection
    OCSP_TIMEOUT: int = 30

    # ── Ownership ──────────────────────────────────────────────────────────
    SERVICE_USER: str = ""        # empty = leave ownership alone
    SERVICE_GROUP: str = ""

    # ── Domain management ──────────────────────────────────────────────────
    INVENTORY_PATH: str = "./inventory.json"
    MANAGED_DOMAINS: List[str] = []   # optional filter; empty = every declared domain

    # ── Scheduling ─────────────────────────────────────────────────────────
    SCHEDULE_TIME: str = "06:00"
    OCSP_REFRESH_HOURS: int = 12
    MAX_WORKERS: int = 4

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("MANAGED_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v: object) -> List[str]:
        """Accept comma-separated string or list."""
        if isinstance(v, str):
            return [d.strip() for d in v.split(",") if d.strip()]
        return v  # type: ignore[return-value]

    @field_validator("EXEC_TIMEOUT", "OCSP_TIMEOUT", "MAX_WORKERS", "OCSP_REFRESH_HOURS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("RENEW_DAYS", "DNS_SLEEP")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def resolve_layout(self) -> "Settings":
        base = Path(self.BASE_DIR)
        defaults = {
            "CSR_DIR": base / "csr",
            "CRT_DIR": base / "certs",
            "RESULTS_DIR": base / "results",
            "ACCT_DIR": base / "accounts",
            "ACME_HOME": base / "acme.sh",
            "HOOK_DIR": base / "hooks",
        }
        for field, default in defaults.items():
            if not getattr(self, field):
                setattr(self, field, str(default))
        if not self.ACME_LOG_FILE:
            self.ACME_LOG_FILE = str(Path(self.ACME_HOME) / "acme.sh.log")
        return self

    @property
    def acme_sh_path(self) -> str:
        return str(Path(self.ACME_INSTALL_DIR) / "acme.sh")


# Module-level singleton — import and use everywhere.
settings = Settings()
