"""End-to-end provisioning flow with Docker, the network and the operator faked out."""

import io

import pytest

from dhis2up.cli import provision as provision_mod
from dhis2up.cli.provision import build_parser, gather_project, negotiate_ports, provision
from dhis2up.config import PortDefaults, StackConfig
from dhis2up.console import RunLog
from dhis2up.errors import PortExhaustedError, ProvisionError

COMPOSE = """\
x-db-base: &db-base
  healthcheck:
    start_period: 30s
services:
  web:
    ports:
      - "127.0.0.1:8080:8080"
      - "127.0.0.1:8081:8081"
      - "127.0.0.1:9011:9011"
  db:
    ports:
      - "127.0.0.1:5432:5432"
volumes:
  dhis2-db-data:
"""


class Response:
    text = COMPOSE
    content = COMPOSE.encode()

    def raise_for_status(self):
        return None


class Session:
    def get(self, url, timeout=None):
        return Response()


class LogFollower:
    def __init__(self, text):
        self.stdout = io.StringIO(text)
        self.returncode = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.returncode = -15


@pytest.fixture(autouse=True)
def docker_on_path(monkeypatch):
    monkeypatch.setattr("dhis2up.stack.docker.shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def config():
    return StackConfig(startup_grace_s=0, shutdown_grace_s=0)


def _args(*extra):
    return build_parser().parse_args(["--project", "demo", "--yes", "--skip-system-update", *extra])


def test_full_run(tmp_path, config, make_probe, make_prompter, make_runner):
    # image default, web default, debug takes the recommendation, jmx typed in, postgres default
    prompter = make_prompter(["", "", "", "9091", ""])
    runner = make_runner()
    sleeps = []
    run_log = RunLog(tmp_path / ".dhis2up" / "provision.log")

    rc = provision(
        _args(),
        tmp_path,
        prompter,
        run_log,
        config=config,
        probe=make_probe(occupied={8081}),
        runner=runner,
        session=Session(),
        popen=lambda cmd, **kw: LogFollower("Server startup in [1234] milliseconds\n"),
        sleep=sleeps.append,
    )

    assert rc == 0
    root = tmp_path / "demo"
    compose = (root / "docker-compose.yml").read_text()
    assert '- "127.0.0.1:8080:8080"' in compose
    assert '- "127.0.0.1:8082:8081"' in compose
    assert '- "127.0.0.1:9091:9011"' in compose
    assert '- "127.0.0.1:5432:5432"' in compose
    assert "demo-db-data:" in compose
    assert "    start_period: 600s" in compose
    assert "DHIS2_IMAGE=dhis2/core-dev:latest" in (root / ".env").read_text()
    assert (root / "docker" / "dhis.conf").is_file()
    assert (["docker", "compose", "up", "-d"], root) in runner.calls
    assert ["sudo", "apt", "update"] not in runner.commands
    assert sleeps == [0, 0]
    log = run_log.path.read_text()
    assert "key=negotiated" in log and "port=9091" in log
    assert "key=detected" in log
    assert "PROVISION success" in log


def test_no_wait_skips_log_follow(tmp_path, config, make_probe, make_prompter, make_runner):
    def popen(cmd, **kw):
        raise AssertionError("logs must not be followed")

    rc = provision(
        _args("--no-wait", "--image", "dhis2/core:2.41"),
        tmp_path,
        make_prompter(["", "", "", ""]),
        RunLog(tmp_path / "run.log"),
        config=config,
        probe=make_probe(),
        runner=make_runner(),
        session=Session(),
        popen=popen,
        sleep=lambda s: None,
    )
    assert rc == 0
    assert "DHIS2_IMAGE=dhis2/core:2.41" in (tmp_path / "demo" / ".env").read_text()


def test_undetected_startup_is_only_a_warning(tmp_path, config, make_probe, make_prompter, make_runner, monkeypatch):
    warnings = []
    monkeypatch.setattr(provision_mod, "warn", warnings.append)
    rc = provision(
        _args(),
        tmp_path,
        make_prompter(["", "", "", "", ""]),
        RunLog(tmp_path / "run.log"),
        config=config,
        probe=make_probe(),
        runner=make_runner(),
        session=Session(),
        popen=lambda cmd, **kw: LogFollower("still starting\n"),
        sleep=lambda s: None,
    )
    assert rc == 0
    assert "not detected" in warnings[0]


def test_system_update_runs_unless_skipped(tmp_path, config, make_probe, make_prompter, make_runner):
    runner = make_runner()
    args = build_parser().parse_args(["--project", "demo", "--yes", "--no-wait"])
    provision(args, tmp_path, make_prompter([""] * 5), RunLog(tmp_path / "run.log"), config=config,
              probe=make_probe(), runner=runner, session=Session(), sleep=lambda s: None)
    assert runner.commands[:2] == [["sudo", "apt", "update"], ["sudo", "apt", "upgrade", "-y"]]


class TestGatherProject:
    def test_prompts_for_everything(self, tmp_path, make_prompter):
        prompter = make_prompter(["demo", "Y", "dhis2/core:2.40"])
        choice = gather_project(prompter, tmp_path, StackConfig())
        assert (choice.name, choice.root, choice.image) == ("demo", tmp_path / "demo", "dhis2/core:2.40")
        assert "(y/N)" in prompter.prompts[1]

    def test_empty_name_is_fatal(self, tmp_path, make_prompter):
        with pytest.raises(ProvisionError, match="Project name cannot be empty"):
            gather_project(make_prompter(["  "]), tmp_path, StackConfig())

    @pytest.mark.parametrize("name", ["../escape", "my project", "-dash"])
    def test_unusable_name_is_fatal(self, tmp_path, make_prompter, name):
        with pytest.raises(ProvisionError, match="Invalid project name"):
            gather_project(make_prompter([name]), tmp_path, StackConfig())

    @pytest.mark.parametrize("answer", ["", "n", "yes"])
    def test_anything_but_y_cancels(self, tmp_path, make_prompter, answer):
        with pytest.raises(ProvisionError, match="cancelled"):
            gather_project(make_prompter(["demo", answer]), tmp_path, StackConfig())


def test_port_exhaustion_aborts(make_probe, make_prompter):
    defaults = PortDefaults(postgres=65535)
    with pytest.raises(PortExhaustedError):
        negotiate_ports(make_probe(occupied={65535}), make_prompter(["", "", ""]), defaults)


def test_main_reports_fatal_errors(tmp_path, monkeypatch):
    def boom(*args, **kwargs):
        raise ProvisionError("Docker command not found in WSL2.")

    monkeypatch.setattr(provision_mod, "provision", boom)
    assert provision_mod.main(["--base-dir", str(tmp_path)]) == 1
    log = (tmp_path / ".dhis2up" / "provision.log").read_text()
    assert "PROVISION start" in log
    assert "PROVISION fail Docker command not found in WSL2." in log


def test_main_interrupt(tmp_path, monkeypatch):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(provision_mod, "provision", interrupted)
    assert provision_mod.main(["--base-dir", str(tmp_path)]) == 1
