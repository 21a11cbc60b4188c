"""
Circuit breaker for unhealthy downstream services.

closed    - calls pass through
open      - calls rejected immediately until the reset timeout elapses
half_open - one call allowed through to probe recovery
"""

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
	CLOSED = "closed"
	OPEN = "open"
	HALF_OPEN = "half_open"


class CircuitBreaker:
	"""Counts consecutive failures and opens after `threshold` of them."""

	def __init__(
		self,
		name: str,
		threshold: int = 5,
		reset_timeout: float = 60.0,
		clock: Optional[Callable[[], float]] = None,
	):
		self.name = name
		self.threshold = threshold
		self.reset_timeout = reset_timeout
		self._clock = clock or time.monotonic
		self._failures = 0
		self._state = CircuitState.CLOSED
		self._opened_at = 0.0

	@property
	def state(self) -> CircuitState:
		return self._state

	@property
	def failures(self) -> int:
		return self._failures

	async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
		if self._state == CircuitState.OPEN:
			elapsed = self._clock() - self._opened_at
			if elapsed > self.reset_timeout:
				self._state = CircuitState.HALF_OPEN
				logger.info(f"Circuit '{self.name}' half-open, probing")
			else:
				raise CircuitOpenError(self.name, self.reset_timeout - elapsed)

		try:
			result = await fn(*args, **kwargs)
		except Exception:
			self._on_failure()
			raise
		self._on_success()
		return result

	def _on_success(self) -> None:
		if self._state != CircuitState.CLOSED:
			logger.info(f"Circuit '{self.name}' closed")
		self._failures = 0
		self._state = CircuitState.CLOSED

	def _on_failure(self) -> None:
		self._failures += 1
		if self._failures >= self.threshold and self._state != CircuitState.OPEN:
			self._state = CircuitState.OPEN
			self._opened_at = self._clock()
			logger.warning(f"Circuit '{self.name}' opened after {self._failures} failures")

	def reset(self) -> None:
		self._failures = 0
		self._state = CircuitState.CLOSED
		self._opened_at = 0.0
