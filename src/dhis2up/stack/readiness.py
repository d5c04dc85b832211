from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from dhis2up.console import info

STARTUP_MARKER = "Server startup in "
STARTUP_UNIT = "milliseconds"


def is_startup_line(line: str) -> bool:
	return STARTUP_MARKER in line and STARTUP_UNIT in line


def scan_for_startup(lines: Iterable[str], echo: Callable[[str], None] = info) -> bool:
	"""Echo each line until the Tomcat startup marker shows up; False if the stream ends first."""
	for raw in lines:
		line = raw.rstrip("\r\n")
		echo(line)
		if is_startup_line(line):
			return True
	return False


def wait_for_startup(
	project_dir: Path,
	timeout_s: float,
	service: str = "web",
	echo: Callable[[str], None] = info,
	popen: Optional[Callable[..., subprocess.Popen]] = None,
) -> bool:
	"""Follow ``docker compose logs -f <service>`` until startup is detected or timeout_s passes."""
	cmd = ["docker", "compose", "logs", "-f", service]
	opener = popen or subprocess.Popen
	try:
		proc = opener(cmd, cwd=project_dir, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, bufsize=1)
	except OSError:
		return False
	with proc:
		# terminating the follower ends the readline loop below
		timer = threading.Timer(timeout_s, proc.terminate)
		timer.daemon = True
		timer.start()
		try:
			detected = scan_for_startup(iter(proc.stdout.readline, ""), echo)
		finally:
			timer.cancel()
			if proc.poll() is None:
				proc.terminate()
	return detected
