class ProvisionError(Exception):
	"""Fatal condition that aborts the provisioning run.

	The message is shown to the operator as-is, so it should say what to do next.
	"""

	def __init__(self, message: str, exit_code: int = 1) -> None:
		super().__init__(message)
		self.message = message
		self.exit_code = exit_code


class PortExhaustedError(ProvisionError):
	def __init__(self, desired_port: int, ceiling: int) -> None:
		super().__init__(f"Could not find an available port starting from {desired_port} up to {ceiling}.")
		self.desired_port = desired_port
		self.ceiling = ceiling
