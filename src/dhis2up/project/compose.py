from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Callable, Mapping, Optional

import requests

from dhis2up.config import HealthcheckOverrides
from dhis2up.console import RunLog, info, warn
from dhis2up.errors import ProvisionError

# Container-side ports published by the upstream compose file.
CONTAINER_PORTS = {"web": 8080, "debug": 8081, "jmx": 9011, "postgres": 5432}

_RX_PORT_MAPPING = re.compile(r'- "127\.0\.0\.1:(\d+):(\d+)"')
_RX_BLOCK_START = re.compile(r"^x-db-base:")
_RX_BLOCK_END = re.compile(r"^services:")
_HEALTH_KEYS = ("start_period", "interval", "timeout", "retries")


def download_compose(
	url: str,
	dest: Path,
	retries: int = 5,
	delay_s: float = 5.0,
	timeout_s: float = 30.0,
	session: Optional[requests.Session] = None,
	sleep: Callable[[float], None] = time.sleep,
	run_log: Optional[RunLog] = None,
) -> int:
	"""Fetch the compose file into ``dest``; returns the attempt that succeeded."""
	if session is None:
		with requests.Session() as http:
			return download_compose(url, dest, retries, delay_s, timeout_s, http, sleep, run_log)
	for attempt in range(1, retries + 1):
		info(f"Attempting to download docker-compose.yml (Attempt {attempt}/{retries})...")
		try:
			resp = session.get(url, timeout=timeout_s)
			resp.raise_for_status()
		except requests.RequestException as exc:
			if run_log:
				run_log.event("download", "attempt_failed", attempt=attempt, error=type(exc).__name__)
			if attempt < retries:
				warn(f"Download failed ({exc}). Retrying in {delay_s:g} seconds...")
				sleep(delay_s)
			else:
				warn(f"Download failed ({exc}).")
			continue
		try:
			dest.write_text(resp.text, encoding="utf-8")
		except OSError as exc:
			raise ProvisionError(f"Failed to write {dest}: {exc}") from exc
		if run_log:
			run_log.event("download", "success", attempt=attempt, bytes=len(resp.content))
		info("Download successful!")
		return attempt
	raise ProvisionError(
		f"Failed to download docker-compose.yml after {retries} attempts. "
		f"Please check your internet connection or the URL: {url}"
	)


def _rewrite_health_line(line: str, healthcheck: HealthcheckOverrides) -> str:
	body = line.rstrip("\r\n")
	ending = line[len(body):]
	for key in _HEALTH_KEYS:
		if re.match(rf"^[ \t]*{key}:", body):
			return f"    {key}: {getattr(healthcheck, key)}{ending}"
	return line


def customize_compose(
	text: str,
	project_name: str,
	host_ports: Mapping[str, int],
	healthcheck: HealthcheckOverrides,
) -> str:
	"""Apply project volume names, host port mappings and DB health-check values.

	``host_ports`` is keyed like CONTAINER_PORTS. Health-check lines are only
	rewritten between the ``x-db-base:`` anchor and the ``services:`` line.
	"""
	text = text.replace("dhis2-db-data:", f"{project_name}-db-data:")
	text = text.replace("db-dump:", f"{project_name}-db-dump:")

	by_container = {CONTAINER_PORTS[name]: port for name, port in host_ports.items()}

	def _map(m: re.Match) -> str:
		published, container = int(m.group(1)), int(m.group(2))
		if published != container or container not in by_container:
			return m.group(0)
		return f'- "127.0.0.1:{by_container[container]}:{container}"'

	text = _RX_PORT_MAPPING.sub(_map, text)

	out = []
	in_block = False
	for line in text.splitlines(keepends=True):
		opened = False
		if not in_block and _RX_BLOCK_START.match(line):
			in_block = opened = True
		if in_block:
			line = _rewrite_health_line(line, healthcheck)
			if not opened and _RX_BLOCK_END.match(line):
				in_block = False
		out.append(line)
	return "".join(out)


def customize_compose_file(path: Path, project_name: str, host_ports: Mapping[str, int],
						   healthcheck: HealthcheckOverrides) -> None:
	try:
		original = path.read_text(encoding="utf-8")
		path.write_text(customize_compose(original, project_name, host_ports, healthcheck), encoding="utf-8")
	except OSError as exc:
		raise ProvisionError(f"Failed to modify {path}: {exc}") from exc
