import subprocess

import pytest


class FakeProbe:
    """Port oracle backed by a fixed set of occupied ports; records every probe."""

    def __init__(self, occupied=()):
        self.occupied = set(occupied)
        self.calls = []

    def is_port_in_use(self, port):
        self.calls.append(port)
        return port in self.occupied


class ScriptedPrompter:
    def __init__(self, answers):
        self.answers = list(answers)
        self.prompts = []

    def ask(self, prompt):
        self.prompts.append(prompt)
        return self.answers.pop(0)


class FakeRunner:
    """Stands in for dhis2up.stack.docker.run; commands listed in ``failing`` exit 1."""

    def __init__(self, failing=()):
        self.failing = [tuple(cmd) for cmd in failing]
        self.calls = []

    def __call__(self, cmd, check=True, capture=False, cwd=None):
        self.calls.append((list(cmd), cwd))
        rc = 1 if tuple(cmd) in self.failing else 0
        if check and rc:
            raise subprocess.CalledProcessError(rc, cmd)
        return subprocess.CompletedProcess(cmd, rc, stdout="", stderr="")

    @property
    def commands(self):
        return [cmd for cmd, _ in self.calls]


@pytest.fixture
def make_probe():
    return FakeProbe


@pytest.fixture
def make_prompter():
    return ScriptedPrompter


@pytest.fixture
def make_runner():
    return FakeRunner
