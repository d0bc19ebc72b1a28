import subprocess
from types import SimpleNamespace

import pytest


class FakeContainer:
    """Answers exec_run calls from a queue of (exit_code, output) results."""

    def __init__(self, results):
        self.results = list(results)
        self.commands = []

    def exec_run(self, cmd, stdout=True, stderr=True):
        self.commands.append(cmd)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeImages:
    def __init__(self, error=None):
        self.pulled = []
        self.error = error

    def pull(self, repository, tag=None):
        if self.error is not None:
            raise self.error
        self.pulled.append(f"{repository}:{tag}")


@pytest.fixture
def fake_docker():
    def make(exec_results=(), pull_error=None):
        container = FakeContainer(exec_results)
        return SimpleNamespace(
            containers=SimpleNamespace(get=lambda cid: container),
            images=FakeImages(pull_error),
            container=container,
        )
    return make


@pytest.fixture
def fake_compose(monkeypatch):
    """Patch subprocess.run with a recorder that plays the compose CLI."""
    state = SimpleNamespace(calls=[], wait_supported=True, container_id='abc123', fail_on=None)

    def fake_run(args, cwd=None, capture_output=False, text=False, check=False, timeout=None):
        state.calls.append(list(args))
        stdout = ''
        rc = 0
        if state.fail_on and state.fail_on in args:
            rc = 1
        elif '--help' in args:
            stdout = '  --no-deps\n  --wait  Wait for services to be running|healthy\n' if state.wait_supported else '  --no-deps\n'
        elif 'ps' in args:
            stdout = f"{state.container_id}\n" if state.container_id else ''
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, args, output=stdout, stderr='boom')
        return subprocess.CompletedProcess(args, rc, stdout=stdout, stderr='')

    monkeypatch.setattr('updater_core.compose_utils.subprocess.run', fake_run)
    return state
