"""
Retry/Diagnosis Loop - plan, build, validate, diagnose and retry.

One PlanExecutor run owns every build attempt of a task. A failed
validation is diagnosed and the root cause picks the recovery strategy:
revise the plan, replan from a delta of what changed, replan with a
wider context, back off and retry, or give up on an impossible task.
Attempts are counted globally across strategies; only running out of
attempts raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config import Config, get_config
from ..errors import ValidationExhaustedError
from ..models import (
	ContextBundle,
	Diagnosis,
	DiagnosisRequest,
	FileChange,
	FileDelta,
	Plan,
	PlanRequest,
	RootCause,
)
from ..services import EngineServices
from .circuit_breaker import CircuitBreaker
from .delta import RetryContext, compute_retry_context
from .helpers import ServiceHelpers
from .profiler import estimate_tokens
from .sub_agents import (
	BudgetMode,
	execute_sub_agents,
	merge_results,
	plan_sub_agents,
	sum_costs,
	sum_tokens,
)
from .task_context import AttemptRecord, EarlyReturn, ErrorPattern, ModelMode, TaskContext

logger = logging.getLogger(__name__)

STRATEGY_HINT_MIN_SIMILARITY = 0.3
STRATEGY_HINT_MAX_CHARS = 800
PREVIOUS_ERROR_CHARS = 500
CODE_CONTEXT_CHARS = 1000
SUB_AGENT_MIN_COMPLEXITY = 5
REVISION_CONSTRAINTS = ["avoid_previous_approach", "simpler_solution"]


class RetryStrategy(str, Enum):
	"""Recovery applied after a diagnosed validation failure."""
	REVISE_PLAN = "revise_plan"
	DELTA_REPLAN = "delta_replan"
	WIDEN_CONTEXT = "widen_context"
	ABORT_IMPOSSIBLE = "abort_impossible"
	BACKOFF = "backoff"


def select_strategy(diagnosis: Diagnosis, ctx: TaskContext) -> RetryStrategy:
	"""Map a diagnosis onto a retry strategy. Checks run in priority order."""
	cause = diagnosis.category
	if cause == RootCause.BAD_PLAN and ctx.plan_revisions < ctx.max_plan_revisions:
		return RetryStrategy.REVISE_PLAN
	if cause == RootCause.IMPLEMENTATION_ERROR or diagnosis.suggested_action == "fix_code":
		return RetryStrategy.DELTA_REPLAN
	if cause == RootCause.MISSING_CONTEXT:
		return RetryStrategy.WIDEN_CONTEXT
	if cause == RootCause.IMPOSSIBLE_TASK:
		return RetryStrategy.ABORT_IMPOSSIBLE
	if cause == RootCause.ENVIRONMENT_ERROR:
		return RetryStrategy.BACKOFF
	# bad_plan past its revision budget and unclassified causes
	return RetryStrategy.DELTA_REPLAN


def estimate_complexity(step_count: int) -> int:
	return min(10, max(1, step_count * 2))


@dataclass
class ExecutionResult:
	success: bool
	files_changed: list[FileChange] = field(default_factory=list)
	sandbox_id: Optional[str] = None
	plan_summary: str = ""
	cost_usd: float = 0.0
	tokens_used: int = 0
	early_return: Optional[EarlyReturn] = None


@dataclass
class _LoopState:
	"""Mutable state of one execute() run."""
	plan: Plan
	sandbox_id: Optional[str] = None
	build_description: str = ""
	files: dict[str, FileChange] = field(default_factory=dict)
	previous_files: list[FileChange] = field(default_factory=list)
	previous_errors: list[str] = field(default_factory=list)
	last_error: str = ""

	@property
	def plan_summary(self) -> str:
		return self.plan.summary()

	@property
	def file_list(self) -> list[FileChange]:
		return list(self.files.values())


class PlanExecutor:
	"""Runs the plan/build/validate/diagnose/retry loop for one task."""

	def __init__(
		self,
		services: EngineServices,
		config: Optional[Config] = None,
		ai_breaker: Optional[CircuitBreaker] = None,
		sandbox_breaker: Optional[CircuitBreaker] = None,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		self.services = services
		self.config = config or get_config()
		self.helpers = ServiceHelpers(services)
		self.ai_breaker = ai_breaker or CircuitBreaker(
			"ai", self.config.ai_failure_threshold, self.config.ai_reset_timeout
		)
		self.sandbox_breaker = sandbox_breaker or CircuitBreaker(
			"sandbox", self.config.sandbox_failure_threshold, self.config.sandbox_reset_timeout
		)
		self._sleep = sleep
		self._handlers = {
			RetryStrategy.REVISE_PLAN: self._revise_plan,
			RetryStrategy.DELTA_REPLAN: self._delta_replan,
			RetryStrategy.WIDEN_CONTEXT: self._widen_context,
			RetryStrategy.ABORT_IMPOSSIBLE: self._abort_impossible,
			RetryStrategy.BACKOFF: self._backoff,
		}

	@property
	def ai(self):
		return self.services.ai

	def _result(
		self,
		ctx: TaskContext,
		state: _LoopState,
		success: bool,
		early_return: Optional[EarlyReturn] = None,
	) -> ExecutionResult:
		return ExecutionResult(
			success=success,
			files_changed=state.file_list,
			sandbox_id=state.sandbox_id,
			plan_summary=state.plan_summary,
			cost_usd=ctx.total_cost_usd,
			tokens_used=ctx.total_tokens_used,
			early_return=early_return,
		)

	async def _plan(self, ctx: TaskContext, action: str, request: PlanRequest, **details) -> Plan:
		plan = await self.helpers.audited_step(
			ctx, action, self.ai_breaker.call, self.ai.plan_task, request, details=details,
		)
		ctx.add_usage(plan.cost_usd, plan.tokens_used, ctx.selected_model)
		return plan

	async def _strategy_hint(self, ctx: TaskContext) -> str:
		hits = await self.helpers.search_memory(ctx.task_description, limit=3, memory_type="strategy")
		if not hits or hits[0].similarity <= STRATEGY_HINT_MIN_SIMILARITY:
			logger.info(f"No relevant strategy found ({len(hits)} results)")
			return ""

		top = hits[0]
		match = f"{top.similarity * 100:.0f}%"
		logger.info(f"Strategy hint found ({match} match)")
		return (
			f"\n\n[STRATEGY HINT]\nSimilar task solved before ({match} match):\n"
			f"{top.content[:STRATEGY_HINT_MAX_CHARS]}\n[END STRATEGY HINT]\n"
		)

	async def _load_error_patterns(self, ctx: TaskContext) -> None:
		hits = await self.helpers.search_memory(
			f"error pattern: {ctx.task_description[:200]}", limit=5, memory_type="error_pattern",
		)
		ctx.error_patterns = [ErrorPattern(pattern=hit.content) for hit in hits]

	async def _run_sub_agents(self, ctx: TaskContext, plan: Plan) -> str:
		"""Dispatch sub-agents when enabled and the plan is large enough. Returns merged context."""
		if not ctx.sub_agents_enabled:
			return ""
		complexity = estimate_complexity(len(plan.steps))
		if complexity < SUB_AGENT_MIN_COMPLEXITY:
			return ""

		budget_mode = BudgetMode.QUALITY_FIRST if ctx.model_mode == ModelMode.MANUAL else BudgetMode(ctx.budget_mode)
		sub_plan = plan_sub_agents(ctx.task_description, plan.summary(), complexity, budget_mode)
		if not sub_plan.agents:
			return ""

		await self.helpers.report(ctx, f"Running {len(sub_plan.agents)} sub-agents in parallel...")
		await self.helpers.audit(
			ctx, "sub_agent_started",
			details={
				"agent_count": len(sub_plan.agents),
				"roles": [a.role.value for a in sub_plan.agents],
				"complexity": complexity,
				"budget_mode": budget_mode.value,
			},
		)

		results = await execute_sub_agents(sub_plan, self.ai)
		merged = await merge_results(results, sub_plan.merge_strategy, self.ai, self.config.merge_model)

		ctx.sub_agent_results = results
		ctx.add_usage(sum_costs(results), sum_tokens(results))

		succeeded = sum(1 for r in results if r.success)
		logger.info(f"Sub-agents finished: {succeeded}/{len(results)} succeeded (${sum_costs(results):.4f})")
		await self.helpers.audit(
			ctx, "sub_agent_completed",
			details={
				"success_count": succeeded,
				"fail_count": len(results) - succeeded,
				"total_cost_usd": sum_costs(results),
				"merge_strategy": sub_plan.merge_strategy.value,
			},
		)
		return merged

	async def execute(
		self,
		ctx: TaskContext,
		bundle: ContextBundle,
		sandbox_id: Optional[str] = None,
		on_building: Optional[Callable[[], None]] = None,
	) -> ExecutionResult:
		"""
		Plan the task and drive build attempts until validation passes.

		Args:
			ctx: Task context, mutated with usage, attempts and revisions
			bundle: Planning-scoped context bundle
			sandbox_id: Existing sandbox to reuse instead of creating one
			on_building: Called once planning is done and the build phase begins

		Returns:
			ExecutionResult; early_return is set for stopped and impossible tasks

		Raises:
			ValidationExhaustedError: When every attempt failed validation
		"""
		strategy_hint = await self._strategy_hint(ctx)

		ctx.metrics.start("planning")
		user_context = f"\n\nUser context: {ctx.user_message}" if ctx.user_message else ""
		plan = await self._plan(
			ctx, "plan_created",
			PlanRequest(
				task=f"{ctx.task_description}{user_context}{strategy_hint}",
				project_structure=bundle.tree,
				relevant_files=bundle.files,
				memory=bundle.memory,
				docs=bundle.docs,
				tools=bundle.tools,
				model=ctx.selected_model,
			),
			model=ctx.selected_model,
		)
		logger.info(f"Task {ctx.task_id}: plan created with {len(plan.steps)} steps")

		await self._load_error_patterns(ctx)

		state = _LoopState(plan=plan)
		merged = await self._run_sub_agents(ctx, plan)
		state.build_description = (
			f"{ctx.task_description}\n\n## Sub-agent Analysis\n{merged}" if merged else ctx.task_description
		)

		if await self.helpers.check_cancelled(ctx, "pre_sandbox"):
			return self._result(ctx, state, False, EarlyReturn.from_context(ctx, "stopped"))

		if on_building is not None:
			on_building()
		ctx.metrics.start("building")
		if sandbox_id:
			state.sandbox_id = sandbox_id
		else:
			state.sandbox_id = await self.helpers.audited_step(
				ctx, "sandbox_created", self.sandbox_breaker.call, self.services.sandbox.create,
				ctx.repo_owner, ctx.repo_name, ctx.branch,
			)
		ctx.sandbox_id = state.sandbox_id
		await self.helpers.checkpoint(
			ctx, "building",
			{"phase": "building", "sandbox_id": state.sandbox_id, "attempt": ctx.total_attempts},
		)

		validated = False
		while ctx.total_attempts < ctx.max_attempts:
			if await self.helpers.check_cancelled(ctx, "pre_builder", state.sandbox_id):
				return self._result(ctx, state, False, EarlyReturn.from_context(ctx, "stopped"))

			ctx.total_attempts += 1
			attempt_start = time.monotonic()
			try:
				outcome = await self._attempt(ctx, bundle, state, attempt_start)
			except Exception as e:
				ctx.attempt_history.append(AttemptRecord(
					step_index=-1,
					action="validation",
					result="failure",
					duration_ms=int((time.monotonic() - attempt_start) * 1000),
					error=str(e),
				))
				if ctx.total_attempts >= ctx.max_attempts:
					raise
				logger.warning(f"Attempt {ctx.total_attempts}/{ctx.max_attempts} raised, retrying: {e}")
				continue

			if isinstance(outcome, ExecutionResult):
				return outcome
			if outcome:
				validated = True
				break

		if not validated:
			raise ValidationExhaustedError(ctx.max_attempts, state.last_error)

		return self._result(ctx, state, True)

	async def _attempt(
		self,
		ctx: TaskContext,
		bundle: ContextBundle,
		state: _LoopState,
		attempt_start: float,
	) -> bool | ExecutionResult:
		"""One build/validate round. True on success, False to retry, a result to stop."""
		logger.info(f"Task {ctx.task_id}: build attempt {ctx.total_attempts}/{ctx.max_attempts}")
		await self.helpers.report(ctx, f"Building (attempt {ctx.total_attempts}/{ctx.max_attempts})...")

		build = await self.helpers.audited_step(
			ctx, "builder_executed", self.ai_breaker.call, self.services.builder.build,
			state.build_description, state.plan, state.sandbox_id, ctx.selected_model,
			details={"sandbox_id": state.sandbox_id, "plan_steps": len(state.plan.steps)},
		)
		ctx.add_usage(build.cost_usd, build.tokens_used, ctx.selected_model)
		for f in build.files:
			state.files[f.path] = f

		ctx.attempt_history.append(AttemptRecord(
			step_index=0,
			action="builder_complete",
			result="success",
			duration_ms=int((time.monotonic() - attempt_start) * 1000),
			tokens_used=build.tokens_used,
		))

		validation = await self.helpers.audited_step(
			ctx, "validation_run", self.sandbox_breaker.call, self.services.sandbox.validate, state.sandbox_id,
			details={"attempt": ctx.total_attempts},
		)
		if validation.success:
			logger.info(f"Task {ctx.task_id}: validation passed on attempt {ctx.total_attempts}")
			return True

		state.last_error = validation.output
		state.previous_errors.append(validation.output[:PREVIOUS_ERROR_CHARS])
		await self.helpers.audit(
			ctx, "validation_failed", success=False,
			details={"attempt": ctx.total_attempts, "output": validation.output[:1000]},
			error=validation.output[:500],
		)

		if ctx.total_attempts >= ctx.max_attempts:
			raise ValidationExhaustedError(ctx.max_attempts, validation.output)

		await self.helpers.report(ctx, f"Analyzing failure (attempt {ctx.total_attempts}/{ctx.max_attempts})...")
		current_files = state.file_list
		diagnosis = await self.helpers.audited_step(
			ctx, "failure_diagnosed", self.ai.diagnose_failure,
			DiagnosisRequest(
				task=ctx.task_description,
				plan=state.plan.steps,
				error=validation.output,
				previous_errors=list(state.previous_errors),
				code_context="\n\n".join(
					f"--- {f.path} ---\n{f.content[:CODE_CONTEXT_CHARS]}" for f in current_files
				),
				model=ctx.selected_model,
			),
			details={"attempt": ctx.total_attempts},
		)
		ctx.add_usage(diagnosis.cost_usd, diagnosis.tokens_used, ctx.selected_model)

		retry_ctx = compute_retry_context(
			ctx, current_files, state.previous_files, state.plan_summary, validation.output, diagnosis,
		)
		full_tokens = estimate_tokens(bundle)
		logger.info(
			f"Retry using delta context: attempt={ctx.total_attempts} full={full_tokens} "
			f"delta={retry_ctx.estimated_tokens} changed_files={len(retry_ctx.changed_files)} "
			f"root_cause={diagnosis.root_cause}"
		)
		state.previous_files = current_files

		strategy = select_strategy(diagnosis, ctx)
		await self.helpers.audit(
			ctx, "diagnosis_result",
			details={"root_cause": diagnosis.root_cause, "reason": diagnosis.reason, "strategy": strategy.value},
		)
		early = await self._handlers[strategy](ctx, bundle, state, diagnosis, retry_ctx, validation.output)
		return early if early is not None else False

	async def _revise_plan(self, ctx, bundle, state, diagnosis, retry_ctx: RetryContext, output):
		ctx.plan_revisions += 1
		await self.helpers.report(ctx, f"Plan is wrong, writing a new one (revision {ctx.plan_revisions})...")
		plan = await self.helpers.audited_step(
			ctx, "plan_revised", self.ai.revise_plan,
			retry_ctx.task_summary, state.plan, diagnosis, list(REVISION_CONSTRAINTS),
			details={"revision": ctx.plan_revisions, "diagnosis": diagnosis.root_cause},
		)
		ctx.add_usage(plan.cost_usd, plan.tokens_used, ctx.selected_model)
		state.plan = plan
		# A revised plan invalidates earlier output
		state.files.clear()
		ctx.metrics.start("building")
		return None

	async def _delta_replan(self, ctx, bundle, state, diagnosis, retry_ctx: RetryContext, output):
		await self.helpers.report(ctx, "Implementation error, fixing code...")
		task = retry_ctx.task_summary
		if diagnosis.suggested_action:
			task = (
				f"{retry_ctx.task_summary}\n\n[RETRY {retry_ctx.attempt_number}] Diagnosis: "
				f"{diagnosis.root_cause} - {diagnosis.reason or ''}. Suggestion: {diagnosis.suggested_action}"
			)
		state.plan = await self._plan(
			ctx, "plan_retry",
			PlanRequest(
				task=task,
				project_structure="",
				changed_files=[FileDelta(path=c.path, diff=c.diff) for c in retry_ctx.changed_files],
				previous_attempt=retry_ctx.plan_summary,
				error_message=retry_ctx.latest_error,
				model=ctx.selected_model,
			),
			attempt=ctx.total_attempts,
			diagnosis=diagnosis.root_cause,
		)
		ctx.metrics.start("building")
		return None

	async def _widen_context(self, ctx, bundle, state, diagnosis, retry_ctx: RetryContext, output):
		await self.helpers.report(ctx, "Missing context, gathering more information...")
		hits = await self.helpers.search_memory(f"{ctx.task_description} {output[:200]}", limit=10)
		state.plan = await self._plan(
			ctx, "plan_retry_with_context",
			PlanRequest(
				task=ctx.task_description,
				project_structure=bundle.tree,
				relevant_files=bundle.files,
				memory=[*bundle.memory, *(hit.content for hit in hits)],
				docs=bundle.docs,
				tools=bundle.tools,
				error_message=output,
				model=ctx.selected_model,
			),
			extra_memories=len(hits),
		)
		ctx.metrics.start("building")
		return None

	async def _abort_impossible(self, ctx, bundle, state, diagnosis, retry_ctx: RetryContext, output):
		reason = (diagnosis.reason or "")[:500]
		logger.info(f"Task {ctx.task_id} diagnosed as impossible: {reason}")
		await self.helpers.report(ctx, f"This task looks impossible: {diagnosis.reason}", "needs_input")
		await self.helpers.notify_tracker(ctx, "blocked", reason)
		return self._result(ctx, state, False, EarlyReturn.from_context(ctx, "impossible_task"))

	async def _backoff(self, ctx, bundle, state, diagnosis, retry_ctx: RetryContext, output):
		delay = self.config.environment_backoff_seconds
		await self.helpers.report(ctx, f"Environment error, retrying in {delay:.0f} seconds...")
		await self._sleep(delay)
		return None


async def execute_plan(
	ctx: TaskContext,
	bundle: ContextBundle,
	services: EngineServices,
	config: Optional[Config] = None,
	sandbox_id: Optional[str] = None,
) -> ExecutionResult:
	"""Run the retry loop with a fresh PlanExecutor."""
	return await PlanExecutor(services, config).execute(ctx, bundle, sandbox_id)
