"""
Tests for AcmeShRunner: exit-code acceptance per mode, timeouts, environment
and working directory.  The first group runs real (tiny) shell commands.
"""
from __future__ import annotations

import time
from unittest.mock import patch

import pytest

from acmeclient.plan import ACCEPTED_EXIT_CODES, InvocationSpec
from acmeclient.runner import AcmeShRunner
from errors import InvocationError


def _spec(script: str, mode: str = "renew", timeout: int = 10, env=None, cwd=None) -> InvocationSpec:
    return InvocationSpec(
        domain="example.com",
        mode=mode,
        argv=["/bin/sh", "-c", script],
        env=env or {},
        accepted_exit_codes=ACCEPTED_EXIT_CODES[mode],
        timeout=timeout,
        cwd=cwd,
    )


class TestRealProcess:
    def test_renew_exit_two_is_success(self):
        result = AcmeShRunner().run(_spec("exit 2", mode="renew"))
        assert result.exit_code == 2

    def test_issue_exit_two_is_failure(self):
        with pytest.raises(InvocationError) as exc_info:
            AcmeShRunner().run(_spec("exit 2", mode="issue"))
        assert exc_info.value.exit_code == 2
        assert exc_info.value.mode == "issue"
        assert exc_info.value.timed_out is False

    def test_other_exit_code_is_failure(self):
        with pytest.raises(InvocationError) as exc_info:
            AcmeShRunner().run(_spec("echo rate limited; exit 1", mode="renew"))
        assert exc_info.value.exit_code == 1
        assert "rate limited" in exc_info.value.output

    def test_timeout_kills_and_fails(self):
        start = time.monotonic()
        with pytest.raises(InvocationError) as exc_info:
            AcmeShRunner().run(_spec("exec sleep 30", timeout=1))
        assert exc_info.value.timed_out is True
        assert exc_info.value.exit_code is None
        assert time.monotonic() - start < 10

    def test_timeout_kills_children_of_the_client(self, tmp_path):
        """A background child (e.g. a dnssleep) must not outlive the timeout."""
        marker = tmp_path / "marker"
        with pytest.raises(InvocationError) as exc_info:
            AcmeShRunner().run(_spec(f"(sleep 2; touch '{marker}') & wait", timeout=1))
        assert exc_info.value.timed_out is True

        time.sleep(2.5)
        assert not marker.exists()

    def test_hook_env_and_path_reach_the_child(self):
        result = AcmeShRunner(exec_path="/usr/bin:/bin").run(
            _spec('echo "$NSUPDATE_KEY|$PATH"', env={"NSUPDATE_KEY": "/etc/k"})
        )
        assert result.output.strip() == "/etc/k|/usr/bin:/bin"

    def test_runs_in_install_dir(self, tmp_path):
        result = AcmeShRunner().run(_spec("pwd", cwd=tmp_path))
        assert result.output.strip() == str(tmp_path.resolve())

    def test_missing_binary_is_invocation_error(self, tmp_path):
        spec = InvocationSpec(domain="example.com", mode="issue",
                              argv=[str(tmp_path / "acme.sh")], timeout=5)
        with pytest.raises(InvocationError):
            AcmeShRunner().run(spec)


class TestEnvironment:
    def test_env_is_minimal_and_session_is_separate(self):
        spec = _spec("true", env={"CF_TOKEN": "abc"})
        with patch("acmeclient.runner.subprocess.Popen") as popen:
            popen.return_value.communicate.return_value = ("", None)
            popen.return_value.returncode = 0
            AcmeShRunner(exec_path="/bin").run(spec)

        kwargs = popen.call_args.kwargs
        assert kwargs["env"] == {"PATH": "/bin", "CF_TOKEN": "abc"}
        assert kwargs["start_new_session"] is True
        popen.return_value.communicate.assert_called_once_with(timeout=10)
