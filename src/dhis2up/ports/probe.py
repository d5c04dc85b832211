"""Port occupancy probes.

Inside WSL2 the guest has its own network stack, but Docker Desktop publishes
container ports on the Windows host. A port can therefore be taken on either
side, and both have to be asked before a port is handed out.
"""

from __future__ import annotations

import re
import shutil
import subprocess
from typing import Callable, Optional, Protocol

from dhis2up.console import diag, warn
from dhis2up.errors import ProvisionError

HOST_NETSTAT = "netstat.exe"
MANUAL_HOST_CHECK = 'cmd /c "netstat -ano | findstr :<port> && pause"'

Runner = Callable[[list[str]], Optional[subprocess.CompletedProcess]]
Which = Callable[[str], Optional[str]]
Notify = Callable[[str], None]


def _capture(cmd: list[str]) -> Optional[subprocess.CompletedProcess]:
	try:
		return subprocess.run(cmd, capture_output=True, text=True, check=False)
	except OSError:
		# missing binary, or a Windows .exe with WSL interop disabled (ENOEXEC)
		return None


class PortProbe(Protocol):
	def is_port_in_use(self, port: int) -> bool: ...


class GuestProbe:
	"""Listening TCP/UDP sockets in the local network namespace (netstat, else ss)."""

	def __init__(self, use_sudo: bool = True, runner: Runner = _capture, which: Which = shutil.which,
				 notify: Optional[Notify] = None) -> None:
		tool = next((t for t in ("netstat", "ss") if which(t)), None)
		if tool is None:
			raise ProvisionError("Neither netstat nor ss is installed. Install net-tools: sudo apt-get install -y net-tools")
		self.cmd = (["sudo"] if use_sudo else []) + [tool, "-tuln"]
		self.runner = runner
		self.notify = notify

	def listing(self) -> str:
		proc = self.runner(self.cmd)
		if proc is None:
			return ""
		if proc.returncode != 0:
			diag(f"'{' '.join(self.cmd)}' exited with {proc.returncode}: {(proc.stderr or '').strip()}")
		return proc.stdout or ""

	def is_port_in_use(self, port: int) -> bool:
		if self.notify:
			self.notify(f"DEBUG: Checking if port {port} is in use within WSL2...")
		in_use = re.search(rf":{port}\b", self.listing()) is not None
		if in_use and self.notify:
			self.notify(f"DEBUG: Port {port} IS in use by another process within WSL2.")
		return in_use


class HostProbe:
	"""LISTENING sockets on the Windows host, seen through netstat.exe."""

	def __init__(self, runner: Runner = _capture, notify: Optional[Notify] = None) -> None:
		self.runner = runner
		self.notify = notify
		self.unavailable_warned = False

	def is_port_in_use(self, port: int) -> bool:
		proc = self.runner([HOST_NETSTAT, "-ano"])
		if proc is None:
			if not self.unavailable_warned:
				self.unavailable_warned = True
				warn(
					f"{HOST_NETSTAT} could not be run. Skipping Windows host port checks; "
					f"check manually on Windows with: {MANUAL_HOST_CHECK}"
				)
			return False
		out = proc.stdout or ""
		in_use = re.search(rf":{port}\b.*LISTENING", out) is not None
		if self.notify:
			verdict = "IS" if in_use else "IS NOT"
			self.notify(f"DEBUG: Port {port} {verdict} in use by a Windows process.")
		return in_use


class LayeredProbe:
	"""Guest first; the host is only asked when the guest reports the port free."""

	def __init__(self, guest: PortProbe, host: PortProbe) -> None:
		self.guest = guest
		self.host = host

	def is_port_in_use(self, port: int) -> bool:
		if self.guest.is_port_in_use(port):
			return True
		return self.host.is_port_in_use(port)


def select_probe(use_sudo: bool = True, runner: Runner = _capture, which: Which = shutil.which,
				 verbose: bool = False) -> PortProbe:
	notify = diag if verbose else None
	guest = GuestProbe(use_sudo=use_sudo, runner=runner, which=which, notify=notify)
	if which(HOST_NETSTAT):
		return LayeredProbe(guest, HostProbe(runner=runner, notify=notify))
	warn(
		f"{HOST_NETSTAT} not found in WSL2 PATH. Skipping Windows host port checks; "
		"a Windows process could still hold a chosen port when the containers start. "
		f"Check manually on Windows with: {MANUAL_HOST_CHECK}"
	)
	return guest
