import os
import sys
import time

import pytest

from homelab_dashboard.ansible.runner import CommandNotFoundError, CommandRunner


@pytest.fixture
def command_runner():
    return CommandRunner()


def test_run_captures_output_and_exit_code(command_runner):
    result = command_runner.run(
        [sys.executable, "-c", "import sys; print('hello'); sys.stderr.write('warn'); sys.exit(3)"],
        timeout=30,
    )

    assert result.exit_code == 3
    assert result.stdout.strip() == "hello"
    assert result.stderr == "warn"
    assert not result.timed_out
    assert not result.output_truncated


def test_run_kills_process_after_timeout(command_runner):
    started = time.monotonic()
    result = command_runner.run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)

    assert result.timed_out
    assert result.exit_code != 0
    assert time.monotonic() - started < 10


def test_run_caps_output(command_runner):
    result = command_runner.run(
        [sys.executable, "-c", "print('x' * 5000)"], timeout=30, max_output_bytes=100
    )

    assert result.output_truncated
    assert result.stdout == "x" * 100


def test_missing_executable(command_runner):
    with pytest.raises(CommandNotFoundError) as excinfo:
        command_runner.run(["/nonexistent/ansible-playbook"], timeout=5)

    assert excinfo.value.executable == "/nonexistent/ansible-playbook"


def test_spawn_writes_to_log(command_runner, tmp_path):
    log_path = tmp_path / "deploy" / "self-deploy.log"

    process = command_runner.spawn([sys.executable, "-c", "print('detached run')"], log_path=str(log_path))

    assert process.pid > 0
    assert process.wait(timeout=10) == 0
    assert "detached run" in log_path.read_text()
    assert os.path.isdir(tmp_path / "deploy")


def test_run_kills_process_once_output_exceeds_cap(command_runner):
    started = time.monotonic()
    result = command_runner.run(
        [sys.executable, "-c",
         "import sys, time; sys.stdout.write('x' * 5000); sys.stdout.flush(); time.sleep(30)"],
        timeout=60,
        max_output_bytes=100,
    )

    assert result.output_truncated
    assert not result.timed_out
    assert result.stdout == "x" * 100
    assert time.monotonic() - started < 10


def test_spawned_child_runs_in_its_own_session(command_runner):
    process = command_runner.spawn([sys.executable, "-c", "import os; os._exit(0 if os.getsid(0) == os.getpid() else 1)"])

    assert process.wait(timeout=10) == 0
