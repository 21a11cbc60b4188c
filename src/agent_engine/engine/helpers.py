"""
Best-effort side effects shared by the engine phases.

Progress reports, audit records, checkpoints, tracker notifications,
memory lookups and sandbox teardown never change control flow: failures
are logged and swallowed here.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..models import MemoryHit
from ..services import AuditEvent, EngineServices
from .task_context import TaskContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceHelpers:
	"""Wraps optional collaborators so callers never need to check for None."""

	def __init__(self, services: EngineServices):
		self.services = services

	async def report(self, ctx: TaskContext, message: str, status: str = "working") -> None:
		if not self.services.reporter:
			return
		try:
			await self.services.reporter.report(ctx, message, status)
		except Exception as e:
			logger.warning(f"Progress report failed: {e}")

	async def audit(
		self,
		ctx: TaskContext,
		action: str,
		success: bool = True,
		details: Optional[dict] = None,
		duration_ms: int = 0,
		error: Optional[str] = None,
	) -> None:
		if not self.services.audit:
			return
		event = AuditEvent(
			action=action,
			task_id=ctx.task_id,
			repo=ctx.repo,
			success=success,
			duration_ms=duration_ms,
			details=details or {},
			error=error,
		)
		try:
			await self.services.audit.record(event)
		except Exception as e:
			logger.warning(f"Audit record '{action}' failed: {e}")

	async def audited_step(
		self,
		ctx: TaskContext,
		action: str,
		fn: Callable[..., Awaitable[T]],
		*args: Any,
		details: Optional[dict] = None,
		**kwargs: Any,
	) -> T:
		"""Time a capability call and audit its success or failure. Errors are re-raised."""
		start = time.monotonic()
		try:
			result = await fn(*args, **kwargs)
		except Exception as e:
			await self.audit(
				ctx, action, success=False, details=details,
				duration_ms=int((time.monotonic() - start) * 1000), error=str(e),
			)
			raise
		await self.audit(ctx, action, success=True, details=details, duration_ms=int((time.monotonic() - start) * 1000))
		return result

	async def destroy_sandbox(self, sandbox_id: Optional[str]) -> None:
		if not sandbox_id:
			return
		try:
			await self.services.sandbox.destroy(sandbox_id)
		except Exception as e:
			logger.warning(f"Failed to destroy sandbox {sandbox_id}: {e}")

	async def check_cancelled(self, ctx: TaskContext, point: str, active_sandbox_id: Optional[str] = None) -> bool:
		"""
		Poll the cancellation oracle.

		An unavailable tracker counts as not cancelled. When cancelled, the
		active sandbox (if any) is torn down.
		"""
		if not self.services.tracker:
			return False
		try:
			cancelled = await self.services.tracker.is_cancelled(ctx.task_id)
		except Exception as e:
			logger.warning(f"Cancellation check at {point} failed: {e}")
			return False

		if not cancelled:
			return False

		logger.info(f"Task {ctx.task_id} cancelled at {point}")
		await self.report(ctx, "Task was cancelled.", "failed")
		await self.destroy_sandbox(active_sandbox_id)
		return True

	async def notify_tracker(self, ctx: TaskContext, status: str, message: Optional[str] = None) -> None:
		if not self.services.tracker or not ctx.tracker_task_id:
			return
		try:
			await self.services.tracker.update_status(ctx.tracker_task_id, status, message)
		except Exception as e:
			logger.warning(f"Tracker update to '{status}' failed: {e}")

	async def checkpoint(self, ctx: TaskContext, phase: str, snapshot: Optional[dict] = None, cost_delta: Optional[float] = None) -> None:
		if not self.services.checkpoints or not ctx.job_id:
			return
		try:
			await self.services.checkpoints.write(ctx.job_id, phase, snapshot or {"phase": phase}, cost_delta)
		except Exception as e:
			logger.warning(f"Checkpoint '{phase}' failed: {e}")

	async def search_memory(self, query: str, limit: int, memory_type: Optional[str] = None) -> list[MemoryHit]:
		if not self.services.memory:
			return []
		try:
			return list(await self.services.memory.search(query, limit=limit, memory_type=memory_type))
		except Exception as e:
			logger.warning(f"Memory search failed ({memory_type or 'any'}): {e}")
			return []
