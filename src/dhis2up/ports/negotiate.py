from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from rich.text import Text

from dhis2up.console import diag, err_console
from dhis2up.errors import PortExhaustedError, ProvisionError
from dhis2up.ports.probe import PortProbe

MIN_PORT = 1024
MAX_PORT = 65535


@dataclass(frozen=True)
class PortRequest:
	description: str  # e.g. "DHIS2 web UI"
	desired_port: int


@dataclass(frozen=True)
class NegotiatedPort:
	description: str
	port: int


class State(Enum):
	PROPOSE_DEFAULT = "ProposeDefault"
	AWAIT_INPUT = "AwaitInput"
	VALIDATE_SYNTAX = "ValidateSyntax"
	VALIDATE_AVAILABILITY = "ValidateAvailability"
	ACCEPTED = "Accepted"


class Prompter(Protocol):
	def ask(self, prompt: str) -> str: ...


class ConsolePrompter:
	"""Line-oriented prompts on stderr so stdout stays clean."""

	def ask(self, prompt: str) -> str:
		return err_console.input(Text(prompt + " "))


def find_available_port(desired_port: int, probe: PortProbe) -> int:
	"""Return the lowest port >= desired_port that the probe reports free."""
	if desired_port < MIN_PORT:
		raise ProvisionError(f"Port {desired_port} is below the allowed range ({MIN_PORT}-{MAX_PORT}).")
	if desired_port > MAX_PORT:
		raise PortExhaustedError(desired_port, MAX_PORT)
	port = desired_port
	while probe.is_port_in_use(port):
		port += 1
		if port > MAX_PORT:
			raise PortExhaustedError(desired_port, MAX_PORT)
	return port


def parse_port(raw: str) -> Optional[int]:
	if not re.fullmatch(r"[0-9]+", raw):
		return None
	port = int(raw)
	if port < MIN_PORT or port > MAX_PORT:
		return None
	return port


class PortNegotiator:
	"""Interactive port selection.

	ProposeDefault -> AwaitInput; empty input accepts the proposal without
	probing it again, anything else is validated for syntax and then for
	availability. Both validation failures fall back to AwaitInput with a
	diagnostic; only PortExhaustedError escapes.
	"""

	def __init__(self, probe: PortProbe, prompter: Prompter, notify: Callable[[str], None] = diag) -> None:
		self.probe = probe
		self.prompter = prompter
		self.notify = notify
		self.transitions: List[State] = []

	def _prompt(self, request: PortRequest, proposed: int) -> str:
		if proposed != request.desired_port:
			return (
				f"{request.description}: Default port {request.desired_port} is IN USE. "
				f"Recommended port is {proposed}. Enter a new port (or press Enter to use {proposed}):"
			)
		return (
			f"{request.description} will be accessible on port {request.desired_port}. "
			f"Enter a new port (or press Enter to use {request.desired_port}):"
		)

	def negotiate(self, request: PortRequest) -> NegotiatedPort:
		self.transitions = [State.PROPOSE_DEFAULT]
		state = State.PROPOSE_DEFAULT
		proposed = request.desired_port
		raw = ""
		# the port under consideration; accepted as-is once state reaches ACCEPTED
		candidate = proposed

		while state is not State.ACCEPTED:
			if state is State.PROPOSE_DEFAULT:
				proposed = find_available_port(request.desired_port, self.probe)
				state = State.AWAIT_INPUT
			elif state is State.AWAIT_INPUT:
				raw = self.prompter.ask(self._prompt(request, proposed)).strip()
				if raw:
					state = State.VALIDATE_SYNTAX
				else:
					candidate = proposed
					state = State.ACCEPTED
			elif state is State.VALIDATE_SYNTAX:
				parsed = parse_port(raw)
				if parsed is None:
					self.notify(f"Invalid input. Please enter a valid port number ({MIN_PORT}-{MAX_PORT}) or press Enter.")
					state = State.AWAIT_INPUT
				else:
					candidate = parsed
					state = State.VALIDATE_AVAILABILITY
			elif state is State.VALIDATE_AVAILABILITY:
				if self.probe.is_port_in_use(candidate):
					self.notify(f"Port {candidate} is already in use. Please choose a different one.")
					state = State.AWAIT_INPUT
				else:
					state = State.ACCEPTED
			self.transitions.append(state)

		return NegotiatedPort(description=request.description, port=candidate)


def get_user_port(description: str, default_port: int, probe: PortProbe, prompter: Prompter,
				  notify: Callable[[str], None] = diag) -> int:
	return PortNegotiator(probe, prompter, notify).negotiate(PortRequest(description, default_port)).port
