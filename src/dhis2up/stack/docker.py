from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from dhis2up.console import info
from dhis2up.errors import ProvisionError

Runner = Callable[..., subprocess.CompletedProcess]
Which = Callable[[str], Optional[str]]

DOCKER_DESKTOP_URL = "https://www.docker.com/products/docker-desktop/"
WSL_RESTART_HINT = "Then, run 'wsl --shutdown' from Windows PowerShell/CMD and reopen this terminal."


def run(cmd: list[str], check: bool = True, capture: bool = False, cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
	return subprocess.run(cmd, check=check, capture_output=capture, text=True, cwd=cwd)


def compose(project_dir: Path, args: list[str], check: bool = True, capture: bool = False,
			runner: Runner = run) -> subprocess.CompletedProcess:
	return runner(["docker", "compose", *args], check=check, capture=capture, cwd=project_dir)


def _succeeds(runner: Runner, cmd: list[str]) -> bool:
	try:
		return runner(cmd, check=False, capture=True).returncode == 0
	except OSError:
		return False


def update_system_packages(runner: Runner = run) -> None:
	for cmd, what in ((["sudo", "apt", "update"], "update"), (["sudo", "apt", "upgrade", "-y"], "upgrade")):
		try:
			runner(cmd)
		except (subprocess.CalledProcessError, OSError) as exc:
			raise ProvisionError(f"Failed to {what} apt packages.") from exc


def verify_docker(runner: Runner = run, which: Optional[Which] = None) -> None:
	"""Docker Desktop must be installed on Windows and integrated with this WSL2 distribution."""
	if not (which or shutil.which)("docker"):
		raise ProvisionError(
			"Docker command not found in WSL2. Please install Docker Desktop for Windows from "
			f"{DOCKER_DESKTOP_URL} and ensure WSL2 integration is enabled for your Ubuntu distribution. "
			+ WSL_RESTART_HINT
		)
	info("Docker command found in WSL2. Verifying Docker Desktop connectivity...")
	if not _succeeds(runner, ["docker", "info"]):
		raise ProvisionError(
			"Docker command exists but cannot connect to Docker daemon. Ensure Docker Desktop is running on "
			"Windows and WSL2 integration is enabled for this distribution. After enabling/starting, you might "
			"need to run 'wsl --shutdown' from Windows PowerShell/CMD and reopen this terminal."
		)
	info("Docker Desktop is running and integrated with WSL2.")
	if not _succeeds(runner, ["docker", "compose", "version"]):
		raise ProvisionError(
			"Docker Compose command not found. This should be provided by Docker Desktop. "
			"Please check your Docker Desktop installation."
		)


def use_default_context(runner: Runner = run) -> None:
	# 'default' points at the WSL2 unix socket that Docker Desktop serves
	try:
		runner(["docker", "context", "use", "default"])
	except (subprocess.CalledProcessError, OSError) as exc:
		raise ProvisionError(
			"Failed to switch Docker context to 'default'. This is crucial for Docker Desktop integration with WSL2."
		) from exc
	runner(["docker", "context", "ls"], check=False)
	info("Docker context set to 'default'.")


def start_stack(project_dir: Path, runner: Runner = run) -> None:
	try:
		compose(project_dir, ["up", "-d"], runner=runner)
	except (subprocess.CalledProcessError, OSError) as exc:
		raise ProvisionError(
			"Failed to start Docker Compose services using 'docker compose up -d'. Please check "
			"'docker compose logs -f' for details. Make sure Docker Desktop integration with WSL2 is running properly."
		) from exc
