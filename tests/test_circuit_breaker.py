"""Tests for the circuit breaker."""

from unittest.mock import AsyncMock

import pytest

from agent_engine.engine.circuit_breaker import CircuitBreaker, CircuitState
from agent_engine.errors import CircuitOpenError


class FakeClock:
	def __init__(self):
		self.now = 0.0

	def __call__(self) -> float:
		return self.now


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def breaker(clock):
	return CircuitBreaker("ai", threshold=2, reset_timeout=10.0, clock=clock)


class TestCircuitBreaker:
	@pytest.mark.asyncio
	async def test_passes_through_when_closed(self, breaker):
		fn = AsyncMock(return_value="ok")
		assert await breaker.call(fn, 1, key="v") == "ok"
		fn.assert_awaited_once_with(1, key="v")
		assert breaker.state == CircuitState.CLOSED

	@pytest.mark.asyncio
	async def test_opens_after_threshold(self, breaker):
		"""Test that consecutive failures open the circuit and later calls are rejected."""
		fn = AsyncMock(side_effect=RuntimeError("down"))
		for _ in range(2):
			with pytest.raises(RuntimeError):
				await breaker.call(fn)
		assert breaker.state == CircuitState.OPEN

		with pytest.raises(CircuitOpenError):
			await breaker.call(fn)
		assert fn.await_count == 2

	@pytest.mark.asyncio
	async def test_half_open_probe_closes_on_success(self, breaker, clock):
		"""Test that a successful probe after the timeout closes the circuit."""
		failing = AsyncMock(side_effect=RuntimeError("down"))
		for _ in range(2):
			with pytest.raises(RuntimeError):
				await breaker.call(failing)

		clock.now = 11.0
		assert await breaker.call(AsyncMock(return_value="back")) == "back"
		assert breaker.state == CircuitState.CLOSED
		assert breaker.failures == 0

	@pytest.mark.asyncio
	async def test_success_resets_failure_count(self, breaker):
		with pytest.raises(RuntimeError):
			await breaker.call(AsyncMock(side_effect=RuntimeError("once")))
		await breaker.call(AsyncMock(return_value=None))
		assert breaker.failures == 0

	def test_reset(self, breaker):
		breaker._on_failure()
		breaker._on_failure()
		assert breaker.state == CircuitState.OPEN
		breaker.reset()
		assert breaker.state == CircuitState.CLOSED
