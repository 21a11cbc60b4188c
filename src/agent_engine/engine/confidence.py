"""
Confidence Router - decides whether a task proceeds and which model runs it.

Runs once per task before planning. Possible outcomes: proceed with a
selected model, or pause for clarification, for a task breakdown, or for
a manual model choice.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config import Config
from ..models import ContextBundle
from .helpers import ServiceHelpers
from .router import select_optimal_model
from .task_context import EarlyReturn, ModelMode, TaskContext

logger = logging.getLogger(__name__)

EMPTY_REPO_SCORE = 90
PROCEED_SCORE = 100
COMPLEXITY_TREE_CHARS = 2000


class PauseReason(str, Enum):
	LOW_CONFIDENCE = "low_confidence"
	NEEDS_BREAKDOWN = "needs_breakdown"
	NEEDS_MODEL_SELECTION = "needs_model_selection"


@dataclass
class ConfidenceResult:
	should_continue: bool
	selected_model: str
	confidence_score: int
	complexity_score: Optional[int] = None
	pause_reason: Optional[PauseReason] = None
	early_return: Optional[EarlyReturn] = None
	uncertainties: list[str] = field(default_factory=list)
	questions: list[str] = field(default_factory=list)
	suggested_subtasks: list[str] = field(default_factory=list)


@dataclass
class RouteOptions:
	force_continue: bool = False
	use_curated: bool = False


def _pause(ctx: TaskContext, reason: PauseReason, score: int, **extra) -> ConfidenceResult:
	return ConfidenceResult(
		should_continue=False,
		selected_model=ctx.selected_model,
		confidence_score=score,
		pause_reason=reason,
		early_return=EarlyReturn.from_context(ctx, reason.value),
		**extra,
	)


async def assess_and_route(
	ctx: TaskContext,
	bundle: ContextBundle,
	helpers: ServiceHelpers,
	config: Config,
	options: Optional[RouteOptions] = None,
	empty_repo: Optional[bool] = None,
	file_count: Optional[int] = None,
) -> ConfidenceResult:
	"""
	Gate the task on confidence, then pick the execution model.

	Args:
		ctx: Task context; selected_model is updated when proceeding
		bundle: Confidence-scoped context bundle
		helpers: Best-effort side effects bound to the engine services
		config: Engine configuration (thresholds, default model)
		options: force_continue / use_curated skip the whole assessment
		empty_repo: Whether the unscoped repository has no paths; derived from
			bundle.tree_list when omitted
		file_count: Path count of the unscoped repository; derived from
			bundle.tree_list when omitted

	Returns:
		ConfidenceResult. When should_continue is False, pause_reason and
		early_return describe why.
	"""
	options = options or RouteOptions()
	ai = helpers.services.ai

	if options.force_continue or options.use_curated:
		model = ctx.model_override or ctx.selected_model or config.default_model
		ctx.selected_model = model
		return ConfidenceResult(should_continue=True, selected_model=model, confidence_score=PROCEED_SCORE)

	if empty_repo is None:
		empty_repo = bundle.is_empty_repo
	if file_count is None:
		file_count = bundle.file_count

	if empty_repo:
		logger.info(f"Task {ctx.task_id}: empty repository, skipping confidence assessment")
		await helpers.report(ctx, "Empty repository, starting without clarification.")
		await helpers.audit(
			ctx, "confidence_details",
			details={"overall": EMPTY_REPO_SCORE, "reason": "empty_repo", "recommended_action": "proceed"},
		)
	else:
		ctx.metrics.start("confidence")
		await helpers.report(ctx, "Assessing confidence in solving the task...")

		assessment = await helpers.audited_step(
			ctx, "confidence_assessed", ai.assess_confidence, ctx.task_description, bundle,
		)
		ctx.add_usage(assessment.cost_usd, assessment.tokens_used)

		await helpers.audit(
			ctx, "confidence_details",
			details={
				"overall": assessment.overall,
				"recommended_action": assessment.recommended_action,
				"uncertainties": assessment.uncertainties,
			},
		)

		if assessment.overall < config.confidence_threshold:
			questions = [*assessment.uncertainties, *assessment.clarifying_questions]
			logger.info(f"Task {ctx.task_id}: low confidence ({assessment.overall}%), pausing for clarification")
			await helpers.report(ctx, f"Confidence is {assessment.overall}%, clarification needed.", "needs_input")
			await helpers.notify_tracker(ctx, "needs_input", "Needs clarification")
			return _pause(
				ctx, PauseReason.LOW_CONFIDENCE, assessment.overall,
				uncertainties=list(assessment.uncertainties),
				questions=questions,
			)

		# Only reachable with overall >= confidence_threshold, so in practice
		# this fires on an explicit break_down recommendation.
		if assessment.overall < config.breakdown_threshold or assessment.recommended_action == "break_down":
			logger.info(f"Task {ctx.task_id}: breakdown recommended ({assessment.overall}%)")
			await helpers.report(ctx, "This looks complex; splitting it into subtasks is recommended.", "needs_input")
			return _pause(
				ctx, PauseReason.NEEDS_BREAKDOWN, assessment.overall,
				suggested_subtasks=list(assessment.suggested_subtasks),
			)

		await helpers.report(ctx, f"{assessment.overall}% confident, starting work.")

	await helpers.checkpoint(ctx, "confidence", {"phase": "confidence"})

	complexity_score: Optional[int] = None
	if ctx.model_override:
		selected = ctx.model_override
	elif ctx.model_mode == ModelMode.MANUAL:
		await helpers.report(ctx, "Which model should be used?", "needs_input")
		return _pause(ctx, PauseReason.NEEDS_MODEL_SELECTION, EMPTY_REPO_SCORE)
	else:
		complexity = await helpers.audited_step(
			ctx, "complexity_assessed", ai.assess_complexity,
			ctx.task_description, bundle.tree[:COMPLEXITY_TREE_CHARS], file_count,
			details={"model_mode": ctx.model_mode.value},
		)
		complexity_score = complexity.score
		selected = select_optimal_model(complexity.score, "auto")
		logger.info(f"Task {ctx.task_id}: complexity {complexity.score}/10 -> {selected}")
		await helpers.audit(
			ctx, "model_selected",
			details={"complexity": complexity.score, "reasoning": complexity.reasoning, "selected_model": selected},
		)

	ctx.selected_model = selected

	return ConfidenceResult(
		should_continue=True,
		selected_model=selected,
		confidence_score=EMPTY_REPO_SCORE if empty_repo else PROCEED_SCORE,
		complexity_score=complexity_score,
	)
