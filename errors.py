"""
Error taxonomy for the certificate lifecycle orchestrator.

  ConfigurationError   — unknown account/profile or unsupported challenge type.
                         Raised before any external call; never retried.
  InvocationError      — the external ACME client exited with a code the mode
                         does not accept, or ran past its timeout.
  OcspRefreshError     — network/parse/CA failure while fetching a staple.
  FilesystemError      — directory or file could not be created/written.

Everything except ConfigurationError is retried on the next scheduling tick.
"""
from __future__ import annotations

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    def __init__(self, message: str, domain: Optional[str] = None) -> None:
        self.domain = domain
        prefix = f"[{domain}] " if domain else ""
        super().__init__(f"{prefix}{message}")


class ConfigurationError(OrchestratorError):
    pass


class UnsupportedChallengeTypeError(ConfigurationError):
    def __init__(self, challengetype: str, domain: Optional[str] = None) -> None:
        self.challengetype = challengetype
        super().__init__(f"unsupported challenge type {challengetype!r}", domain=domain)


class InvocationError(OrchestratorError):
    """Raised when the external ACME client run is not accepted."""

    def __init__(
        self,
        domain: str,
        mode: str,
        exit_code: Optional[int] = None,
        timed_out: bool = False,
        output: str = "",
    ) -> None:
        self.mode = mode
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.output = output
        if timed_out:
            message = f"{mode} timed out"
        else:
            message = f"{mode} exited with code {exit_code}"
        super().__init__(message, domain=domain)


class OcspRefreshError(OrchestratorError):
    pass


class FilesystemError(OrchestratorError):
    pass
