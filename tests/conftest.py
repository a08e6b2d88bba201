"""
Shared pytest fixtures.

PKI fixtures
------------
`pki` generates a throwaway CA once per session and can mint leaf
certificates with any remaining validity and an OCSP responder URL in the AIA
extension.  EC keys keep generation fast.

Fake external client
--------------------
`fake_acme_sh` patches ``subprocess.Popen`` inside the runner so the real
AcmeShRunner (exit-code acceptance, env, timeout handling) is exercised while
the "client" just writes the files acme.sh would write.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from acmeclient.ocsp import OcspStapler
from acmeclient.plan import PlanOptions
from config import Settings
from storage.filesystem import Layout

OCSP_URL = "http://ocsp.test.example/lookup"


# ─── PKI ──────────────────────────────────────────────────────────────────────


class TestPKI:
    __test__ = False  # not a test class

    def __init__(self) -> None:
        self.ca_key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.now(tz=timezone.utc)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Issuing CA")])
        self.ca_cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.ca_key, hashes.SHA256())
        )

    @property
    def ca_pem(self) -> bytes:
        return self.ca_cert.public_bytes(serialization.Encoding.PEM)

    def leaf(
        self,
        domain: str = "example.com",
        days_remaining: float = 89,
        ocsp_url: str | None = OCSP_URL,
    ) -> x509.Certificate:
        now = datetime.now(tz=timezone.utc)
        key = ec.generate_private_key(ec.SECP256R1())
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
            .issuer_name(self.ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=days_remaining))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        )
        if ocsp_url:
            builder = builder.add_extension(
                x509.AuthorityInformationAccess([
                    x509.AccessDescription(
                        AuthorityInformationAccessOID.OCSP,
                        x509.UniformResourceIdentifier(ocsp_url),
                    )
                ]),
                critical=False,
            )
        return builder.sign(self.ca_key, hashes.SHA256())

    def leaf_pem(self, **kwargs) -> bytes:
        return self.leaf(**kwargs).public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def pki() -> TestPKI:
    return TestPKI()


@pytest.fixture(scope="session")
def csr_pem() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")]))
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM).decode()


# ─── Layout / settings ────────────────────────────────────────────────────────


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        BASE_DIR=str(tmp_path / "acme"),
        ACME_INSTALL_DIR=str(tmp_path / "opt" / "acme.sh"),
        WEBROOT_PATH=str(tmp_path / "webroot"),
        MANAGED_DOMAINS=[],
        PROXY="",
        SERVICE_USER="",
        SERVICE_GROUP="",
        MAX_WORKERS=4,
    )


@pytest.fixture()
def layout(settings: Settings) -> Layout:
    return Layout.from_settings(settings)


@pytest.fixture()
def plan_options(settings: Settings) -> PlanOptions:
    return PlanOptions.from_settings(settings)


@pytest.fixture()
def mock_stapler() -> MagicMock:
    return MagicMock(spec=OcspStapler)


# ─── Fake external client ─────────────────────────────────────────────────────


def _arg(argv: list[str], flag: str) -> str:
    return argv[argv.index(flag) + 1]


@pytest.fixture()
def fake_acme_sh(pki: TestPKI):
    """
    Factory: ``with fake_acme_sh(exit_code=0, writes=True) as fake: ...``

    When ``writes`` is true the fake writes cert/chain/fullchain to the paths
    named on the command line plus the certificate in its own home, like a
    successful acme.sh run.  ``fake.calls`` collects (argv, kwargs) per invocation.
    """

    class _FakeProcess:
        pid = 0

        def __init__(self, fake: "_Fake", argv: list[str]) -> None:
            self.args = argv
            self.returncode = None
            self._fake = fake

        def communicate(self, timeout=None):
            if self._fake.writes:
                self._fake.write_outputs(self.args)
            self.returncode = self._fake.exit_code
            return "acme.sh output\n", None

    class _Fake:
        def __init__(self, exit_code: int = 0, writes: bool = True, days_remaining: float = 89):
            self.exit_code = exit_code
            self.writes = writes
            self.days_remaining = days_remaining
            self.calls: list[tuple[list[str], dict]] = []
            self._patch = patch("acmeclient.runner.subprocess.Popen", side_effect=self._popen)

        def _popen(self, argv, **kwargs):
            self.calls.append((list(argv), kwargs))
            return _FakeProcess(self, list(argv))

        def write_outputs(self, argv: list[str]) -> None:
            domain = _arg(argv, "--domain")
            leaf = pki.leaf_pem(domain=domain, days_remaining=self.days_remaining)
            for flag, data in (
                ("--cert-file", leaf),
                ("--ca-file", pki.ca_pem),
                ("--fullchain-file", leaf + pki.ca_pem),
            ):
                path = Path(_arg(argv, flag))
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            tool_cert = Path(_arg(argv, "--home")) / domain / f"{domain}.cer"
            tool_cert.parent.mkdir(parents=True, exist_ok=True)
            tool_cert.write_bytes(leaf)

        def __enter__(self) -> "_Fake":
            self._patch.start()
            return self

        def __exit__(self, *exc) -> None:
            self._patch.stop()

    return _Fake
