"""Exception types raised by the engine."""


class EngineError(Exception):
	"""Base class for engine errors."""


class ValidationExhaustedError(EngineError):
	"""Every build attempt failed validation."""

	def __init__(self, attempts: int, last_output: str):
		self.attempts = attempts
		self.last_output = last_output
		super().__init__(f"Validation failed after {attempts} attempts: {last_output}")


class RepoLockedError(EngineError):
	"""Another task holds the advisory lock for this repository."""

	code = "repo_locked"

	def __init__(self, owner: str, name: str):
		self.owner = owner
		self.name = name
		super().__init__(f"Repository {owner}/{name} is locked by another task")


class IllegalTransitionError(EngineError):
	"""A phase transition is not allowed from the current phase."""

	def __init__(self, from_phase: str, to_phase: str):
		self.from_phase = from_phase
		self.to_phase = to_phase
		super().__init__(f"Illegal phase transition: {from_phase} -> {to_phase}")


class CircuitOpenError(EngineError):
	"""Calls are rejected while a circuit breaker is open."""

	def __init__(self, name: str, retry_in: float):
		self.name = name
		self.retry_in = retry_in
		super().__init__(f"Circuit '{name}' is open, retry in {retry_in:.0f}s")
