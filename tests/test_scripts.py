"""
Tests for the local script runner.
"""

import subprocess
from unittest.mock import patch

import pytest

from vmdeck.exceptions import OperationError, ValidationError
from vmdeck.services.scripts import resolve_script, run_script

from conftest import URI, VM_UUID


def _write_script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


@pytest.fixture
def script_dir(tmp_path):
    directory = tmp_path / "scripts"
    directory.mkdir()
    return directory


class TestResolve:
    """Path validation."""

    def test_relative_to_script_dir(self, script_dir):
        script = _write_script(script_dir / "backup.sh", "exit 0\n")
        assert resolve_script("backup.sh", script_dir) == script

    def test_missing(self, script_dir):
        with pytest.raises(ValidationError, match="not found"):
            resolve_script("nope.sh", script_dir)

    def test_not_executable(self, script_dir):
        script = script_dir / "plain.sh"
        script.write_text("echo hi\n")
        with pytest.raises(ValidationError, match="not executable"):
            resolve_script(str(script))

    def test_empty(self):
        with pytest.raises(ValidationError):
            resolve_script("  ")


class TestRun:
    """Environment, arguments and failures."""

    def test_environment_and_output(self, script_dir, make_vm):
        _write_script(
            script_dir / "env.sh",
            'echo "$VMDECK_VM_NAME $VMDECK_VM_UUID $VMDECK_SERVER $VMDECK_VM_IP"\n',
        )
        returncode, output = run_script("env.sh", "", make_vm(), "10.0.0.5", script_dir)
        assert returncode == 0
        assert output.strip() == f"web01 {VM_UUID} {URI} 10.0.0.5"

    def test_arguments_split_like_a_shell(self, script_dir, make_vm):
        _write_script(script_dir / "args.sh", 'for a in "$@"; do echo "[$a]"; done\n')
        _, output = run_script("args.sh", "--tag 'nightly backup'", make_vm(), script_dir=script_dir)
        assert output.splitlines() == ["[--tag]", "[nightly backup]"]

    def test_exit_code_and_stderr(self, script_dir, make_vm):
        _write_script(script_dir / "fail.sh", "echo broken >&2\nexit 4\n")
        returncode, output = run_script("fail.sh", "", make_vm(), script_dir=script_dir)
        assert returncode == 4
        assert "broken" in output

    def test_unbalanced_quotes(self, script_dir, make_vm):
        _write_script(script_dir / "ok.sh", "exit 0\n")
        with pytest.raises(ValidationError, match="arguments"):
            run_script("ok.sh", "'unterminated", make_vm(), script_dir=script_dir)

    def test_timeout(self, script_dir, make_vm):
        _write_script(script_dir / "slow.sh", "sleep 1000\n")
        with patch(
            "vmdeck.services.scripts.subprocess.run",
            side_effect=subprocess.TimeoutExpired("slow.sh", 600),
        ):
            with pytest.raises(OperationError, match="timed out"):
                run_script("slow.sh", "", make_vm(), script_dir=script_dir)
