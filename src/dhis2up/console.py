from __future__ import annotations

import time
from collections import defaultdict
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

# Progress goes to stdout; diagnostics, prompts and errors to stderr.
console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)


def banner(message: str, error: bool = False) -> None:
	target = err_console if error else console
	style = "red" if error else "cyan"
	target.print()
	target.print(Panel(Text(message), border_style=style, expand=False))
	target.print()


def info(message: str) -> None:
	console.print(Text(message))


def warn(message: str) -> None:
	err_console.print(Text(message, style="yellow"))


def diag(message: str) -> None:
	err_console.print(Text(message))


def _ts() -> str:
	return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class RunLog:
	"""Append-only event log for one provisioning run.

	Lines look like ``[ts] EVENT state=ports key=negotiated attempt=1 port=8080``
	so a failed run can be reconstructed after the terminal is gone.
	"""

	def __init__(self, path: Path) -> None:
		self.path = path
		self.counters: dict[str, int] = defaultdict(int)

	def append(self, line: str) -> None:
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			with open(self.path, "a", encoding="utf-8") as f:
				f.write(f"[{_ts()}] {line}\n")
		except OSError:
			# the log is best effort; provisioning continues without it
			pass

	def event(self, state: str, key: str, **fields: object) -> None:
		self.counters[key] += 1
		kv = " ".join(f"{k}={fields[k]}" for k in fields)
		self.append(f"EVENT state={state} key={key} attempt={self.counters[key]} {kv}".rstrip())
