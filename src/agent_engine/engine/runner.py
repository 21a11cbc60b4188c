"""
Task runner - the top-level driver of one task execution.

Sequences context -> confidence -> planning/building -> review, moving a
PhaseMachine through the phases. Pauses and stops are returned as a
TaskOutcome; exhausted retries and unexpected errors are cleaned up
centrally and re-raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..config import Config, get_config
from ..errors import RepoLockedError
from ..models import ContextBundle
from ..services import EngineServices
from .confidence import PauseReason, RouteOptions, assess_and_route
from .execution import ExecutionResult, PlanExecutor
from .helpers import ServiceHelpers
from .profiler import filter_for_phase
from .state_machine import Phase, PhaseMachine
from .task_context import OutcomeStatus, TaskContext, TaskOutcome

logger = logging.getLogger(__name__)

PAUSE_STATUS = {
	PauseReason.LOW_CONFIDENCE: OutcomeStatus.LOW_CONFIDENCE,
	PauseReason.NEEDS_BREAKDOWN: OutcomeStatus.NEEDS_BREAKDOWN,
	PauseReason.NEEDS_MODEL_SELECTION: OutcomeStatus.NEEDS_MODEL_SELECTION,
}


@dataclass
class RunOptions:
	"""Per-call switches for execute_task."""
	force_continue: bool = False
	use_curated: bool = False
	skip_review: bool = False
	sandbox_id: Optional[str] = None


class TaskRunner:
	"""
	Drives tasks through the engine.

	One runner may execute many tasks concurrently; every call gets its own
	PhaseMachine and works only on the TaskContext it was given. Circuit
	breakers are shared between those calls.
	"""

	def __init__(
		self,
		services: EngineServices,
		config: Optional[Config] = None,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		self.services = services
		self.config = config or get_config()
		self.helpers = ServiceHelpers(services)
		self.executor = PlanExecutor(services, self.config, sleep=sleep)

	def new_context(self, **kwargs) -> TaskContext:
		"""Create a TaskContext seeded with configured limits and defaults."""
		kwargs.setdefault("max_attempts", self.config.max_attempts)
		kwargs.setdefault("max_plan_revisions", self.config.max_plan_revisions)
		kwargs.setdefault("selected_model", self.config.default_model)
		kwargs.setdefault("budget_mode", self.config.budget_mode)
		kwargs.setdefault("sub_agents_enabled", self.config.sub_agents_enabled)
		ctx = TaskContext(**kwargs)
		ctx.metrics.task_id = ctx.task_id
		return ctx

	def _enter(self, ctx: TaskContext, machine: PhaseMachine, phase: Phase) -> None:
		ctx.phase = machine.transition_to(phase)
		logger.debug(f"Task {ctx.task_id} -> {phase.value}")

	def _outcome(self, ctx: TaskContext, status: OutcomeStatus, **extra) -> TaskOutcome:
		return TaskOutcome(
			status=status,
			cost_usd=ctx.total_cost_usd,
			tokens_used=ctx.total_tokens_used,
			selected_model=ctx.selected_model,
			**extra,
		)

	async def execute_task(
		self,
		ctx: TaskContext,
		bundle: Optional[ContextBundle] = None,
		options: Optional[RunOptions] = None,
	) -> TaskOutcome:
		"""
		Run one task end to end under the repository lock.

		Args:
			ctx: Task context owned by this call
			bundle: Pre-built context; fetched from the context provider when omitted
			options: force_continue/use_curated skip the confidence gate,
				skip_review completes without the review capability

		Returns:
			TaskOutcome describing completion, review handoff, pause or stop

		Raises:
			RepoLockedError: Another task holds the repository lock
			ValidationExhaustedError: Every build attempt failed validation
		"""
		options = options or RunOptions()
		lock = self.services.repo_lock
		holder = ctx.conversation_id or ctx.task_id

		if lock is not None:
			acquired = await lock.acquire(ctx.repo_owner, ctx.repo_name, holder)
			if not acquired:
				logger.warning(f"Task {ctx.task_id} rejected: {ctx.repo} is locked")
				raise RepoLockedError(ctx.repo_owner, ctx.repo_name)

		machine = PhaseMachine(ctx.task_id, strict=self.config.strict_transitions, initial=ctx.phase)
		try:
			return await self._run(ctx, machine, bundle, options)
		except Exception as e:
			await self._handle_failure(ctx, machine, e)
			raise
		finally:
			ctx.metrics.end()
			if lock is not None:
				try:
					await lock.release(ctx.repo_owner, ctx.repo_name, holder)
				except Exception as e:
					logger.warning(f"Failed to release lock for {ctx.repo}: {e}")

	async def _run(
		self,
		ctx: TaskContext,
		machine: PhaseMachine,
		bundle: Optional[ContextBundle],
		options: RunOptions,
	) -> TaskOutcome:
		logger.info(f"Starting task {ctx.task_id} on {ctx.repo}")
		await self.helpers.audit(ctx, "task_started", details={"description": ctx.task_description[:200]})

		# Context
		self._enter(ctx, machine, Phase.CONTEXT)
		ctx.metrics.start("context")
		if bundle is None:
			if self.services.context_provider is not None:
				bundle = await self.services.context_provider.build_context(ctx)
			else:
				bundle = ContextBundle()
		if await self.helpers.check_cancelled(ctx, "post_context"):
			self._enter(ctx, machine, Phase.STOPPED)
			return self._outcome(ctx, OutcomeStatus.STOPPED)

		# Confidence
		self._enter(ctx, machine, Phase.CONFIDENCE)
		routed = await assess_and_route(
			ctx,
			filter_for_phase(bundle, "confidence"),
			self.helpers,
			self.config,
			RouteOptions(force_continue=options.force_continue, use_curated=options.use_curated),
			empty_repo=bundle.is_empty_repo,
			file_count=bundle.file_count,
		)
		if not routed.should_continue:
			self._enter(ctx, machine, Phase.NEEDS_INPUT)
			await self.helpers.checkpoint(ctx, Phase.NEEDS_INPUT.value, {"pause_reason": routed.pause_reason.value})
			return self._outcome(
				ctx, PAUSE_STATUS[routed.pause_reason],
				confidence_score=routed.confidence_score,
				uncertainties=routed.uncertainties,
				questions=routed.questions,
				suggested_subtasks=routed.suggested_subtasks,
			)

		# Planning and building
		self._enter(ctx, machine, Phase.PLANNING)
		result = await self.executor.execute(
			ctx,
			filter_for_phase(bundle, "planning"),
			sandbox_id=options.sandbox_id,
			on_building=lambda: self._enter(ctx, machine, Phase.BUILDING),
		)

		if result.early_return is not None:
			return await self._early_outcome(ctx, machine, result, routed.confidence_score)

		# Review
		self._enter(ctx, machine, Phase.REVIEWING)
		ctx.metrics.start("review")
		files = [f.path for f in result.files_changed]

		if options.skip_review:
			await self.helpers.destroy_sandbox(result.sandbox_id)
			self._enter(ctx, machine, Phase.COMPLETED)
			await self.helpers.notify_tracker(ctx, "done")
			await self.helpers.checkpoint(ctx, Phase.COMPLETED.value, {"files": files})
			await self.helpers.report(ctx, f"Done: {len(files)} files changed.", "completed")
			return self._outcome(
				ctx, OutcomeStatus.COMPLETED,
				files_changed=files,
				plan_summary=result.plan_summary,
				confidence_score=routed.confidence_score,
			)

		review = await self.helpers.audited_step(
			ctx, "code_reviewed", self.services.ai.review_code,
			ctx.task_description, result.files_changed, filter_for_phase(bundle, "reviewing"),
		)
		ctx.add_usage(review.cost_usd, review.tokens_used, ctx.selected_model)

		self._enter(ctx, machine, Phase.PENDING_REVIEW)
		await self.helpers.notify_tracker(ctx, "in_review")
		await self.helpers.checkpoint(
			ctx, Phase.PENDING_REVIEW.value, {"files": files, "sandbox_id": result.sandbox_id},
		)
		await self.helpers.report(ctx, "Changes are ready for review.", "needs_input")
		return self._outcome(
			ctx, OutcomeStatus.PENDING_REVIEW,
			files_changed=files,
			sandbox_id=result.sandbox_id,
			plan_summary=result.plan_summary,
			confidence_score=routed.confidence_score,
			review=review,
		)

	async def _early_outcome(
		self,
		ctx: TaskContext,
		machine: PhaseMachine,
		result: ExecutionResult,
		confidence_score: int,
	) -> TaskOutcome:
		files = [f.path for f in result.files_changed]
		if result.early_return.error_message == OutcomeStatus.IMPOSSIBLE_TASK.value:
			await self.helpers.destroy_sandbox(result.sandbox_id)
			self._enter(ctx, machine, Phase.FAILED)
			await self.helpers.checkpoint(ctx, Phase.FAILED.value, {"reason": "impossible_task"})
			return self._outcome(
				ctx, OutcomeStatus.IMPOSSIBLE_TASK,
				files_changed=files,
				plan_summary=result.plan_summary,
				confidence_score=confidence_score,
			)

		self._enter(ctx, machine, Phase.STOPPED)
		await self.helpers.checkpoint(ctx, Phase.STOPPED.value, {"files": files})
		return self._outcome(
			ctx, OutcomeStatus.STOPPED,
			files_changed=files,
			plan_summary=result.plan_summary,
			confidence_score=confidence_score,
		)

	async def _handle_failure(self, ctx: TaskContext, machine: PhaseMachine, error: Exception) -> None:
		"""Uniform cleanup for exhausted retries and unexpected errors."""
		logger.error(f"Task {ctx.task_id} failed in phase {ctx.phase.value}: {error}")
		if not machine.is_terminal:
			self._enter(ctx, machine, Phase.FAILED)
		await self.helpers.destroy_sandbox(ctx.sandbox_id)
		await self.helpers.checkpoint(ctx, Phase.FAILED.value, {"error": str(error)[:1000]})
		await self.helpers.notify_tracker(ctx, "failed", str(error)[:500])
		await self.helpers.audit(ctx, "task_failed", success=False, error=str(error)[:500])
		await self.helpers.report(ctx, f"Task failed: {str(error)[:500]}", "failed")
