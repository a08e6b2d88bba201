"""
Runs an InvocationSpec against the external ACME client.

The child gets a minimal environment (PATH plus the hook variables), runs in
the client's install directory in its own session, and is killed together with
its children when it exceeds the timeout.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from typing import Optional

from acmeclient.plan import InvocationSpec
from errors import InvocationError

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


@dataclass(frozen=True)
class InvocationResult:
    domain: str
    mode: str
    exit_code: int
    output: str


class AcmeShRunner:
    """Executes external client invocations.  Stateless and thread-safe."""

    def __init__(self, exec_path: str = "/usr/sbin:/usr/bin:/sbin:/bin") -> None:
        self.exec_path = exec_path

    def build_env(self, spec: InvocationSpec) -> dict:
        env = {"PATH": self.exec_path}
        env.update(spec.env)
        return env

    def run(self, spec: InvocationSpec) -> InvocationResult:
        """
        Run the client and return its result when the exit code is accepted.

        The client runs in its own session so that on timeout the whole process
        group (the shell script and whatever it spawned) is killed.

        Raises InvocationError on an unaccepted exit code or on timeout.
        """
        logger.info("Running %s for %s", spec.mode, spec.domain)
        logger.debug("argv for %s: %s", spec.domain, spec.argv)
        try:
            proc = subprocess.Popen(
                spec.argv,
                env=self.build_env(spec),
                cwd=str(spec.cwd) if spec.cwd else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            raise InvocationError(spec.domain, spec.mode, output=str(exc)) from exc

        try:
            stdout, _ = proc.communicate(timeout=spec.timeout)
        except subprocess.TimeoutExpired as exc:
            logger.warning("%s for %s exceeded %ss — killing process group", spec.mode, spec.domain, spec.timeout)
            _kill_group(proc)
            stdout, _ = proc.communicate()
            raise InvocationError(
                spec.domain, spec.mode, timed_out=True, output=_tail(stdout)
            ) from exc

        output = _tail(stdout)
        if not spec.accepts(proc.returncode):
            raise InvocationError(spec.domain, spec.mode, exit_code=proc.returncode, output=output)

        logger.info("%s for %s finished with exit code %d", spec.mode, spec.domain, proc.returncode)
        return InvocationResult(
            domain=spec.domain, mode=spec.mode, exit_code=proc.returncode, output=output
        )


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # group already gone
        return


def _tail(output: Optional[object]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    return str(output)[-_OUTPUT_TAIL:]
