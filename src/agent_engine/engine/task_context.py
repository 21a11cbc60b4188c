"""
Task execution context - the single-owner mutable record of one task attempt.

Each execution creates its own TaskContext and threads it through the
phases. Nothing here is shared between concurrently running tasks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config import DEFAULT_MODEL
from .metrics import PhaseTracker
from .state_machine import Phase


class ModelMode(str, Enum):
	"""How the execution model is chosen."""
	AUTO = "auto"
	MANUAL = "manual"


@dataclass
class AttemptRecord:
	"""One build attempt as recorded in the attempt history."""
	step_index: int
	action: str
	result: str  # "success" or "failure"
	duration_ms: int
	tokens_used: int = 0
	error: Optional[str] = None


@dataclass
class ErrorPattern:
	"""A recurring error previously seen on similar tasks."""
	pattern: str
	frequency: int = 1
	last_seen: str = field(default_factory=lambda: datetime.now().isoformat())
	known_fix: Optional[str] = None


@dataclass
class TaskContext:
	"""Mutable state owned by exactly one task execution."""
	task_id: str
	conversation_id: str
	repo_owner: str
	repo_name: str
	task_description: str
	user_message: str = ""
	branch: str = "main"
	tracker_task_id: Optional[str] = None
	job_id: Optional[str] = None
	sandbox_id: Optional[str] = None

	# Model routing
	model_mode: ModelMode = ModelMode.AUTO
	model_override: Optional[str] = None
	selected_model: str = DEFAULT_MODEL
	budget_mode: str = "balanced"
	sub_agents_enabled: bool = False

	# Running totals
	total_cost_usd: float = 0.0
	total_tokens_used: int = 0

	# Retry bookkeeping
	total_attempts: int = 0
	max_attempts: int = 5
	plan_revisions: int = 0
	max_plan_revisions: int = 2
	attempt_history: list[AttemptRecord] = field(default_factory=list)
	error_patterns: list[ErrorPattern] = field(default_factory=list)
	sub_agent_results: list[Any] = field(default_factory=list)

	phase: Phase = Phase.PREPARING
	metrics: PhaseTracker = field(default_factory=PhaseTracker)

	@property
	def repo(self) -> str:
		return f"{self.repo_owner}/{self.repo_name}"

	@property
	def attempts_remaining(self) -> int:
		return max(0, self.max_attempts - self.total_attempts)

	def add_usage(self, cost_usd: float = 0.0, tokens: int = 0, model: str = "") -> None:
		"""Accumulate cost/tokens on the task and the current phase metrics."""
		self.total_cost_usd += cost_usd or 0.0
		self.total_tokens_used += tokens or 0
		self.metrics.record_call(tokens_input=tokens or 0, cost_usd=cost_usd or 0.0, model=model)


class OutcomeStatus(str, Enum):
	"""Discriminator of a task outcome."""
	COMPLETED = "completed"
	PENDING_REVIEW = "pending_review"
	LOW_CONFIDENCE = "low_confidence"
	NEEDS_BREAKDOWN = "needs_breakdown"
	NEEDS_MODEL_SELECTION = "needs_model_selection"
	STOPPED = "stopped"
	IMPOSSIBLE_TASK = "impossible_task"


@dataclass
class EarlyReturn:
	"""Terminal result produced before the pipeline finished."""
	error_message: str
	files_changed: list[str] = field(default_factory=list)
	cost_usd: float = 0.0
	tokens_used: int = 0
	success: bool = False

	@classmethod
	def from_context(cls, ctx: TaskContext, error_message: str, files_changed: Optional[list[str]] = None) -> "EarlyReturn":
		return cls(
			error_message=error_message,
			files_changed=list(files_changed or []),
			cost_usd=ctx.total_cost_usd,
			tokens_used=ctx.total_tokens_used,
		)


@dataclass
class TaskOutcome:
	"""What execute_task hands back to its caller."""
	status: OutcomeStatus
	files_changed: list[str] = field(default_factory=list)
	cost_usd: float = 0.0
	tokens_used: int = 0
	sandbox_id: Optional[str] = None
	plan_summary: str = ""
	selected_model: Optional[str] = None
	confidence_score: Optional[int] = None
	uncertainties: list[str] = field(default_factory=list)
	questions: list[str] = field(default_factory=list)
	suggested_subtasks: list[str] = field(default_factory=list)
	review: Optional[Any] = None

	@property
	def success(self) -> bool:
		return self.status in (OutcomeStatus.COMPLETED, OutcomeStatus.PENDING_REVIEW)

	@property
	def is_pause(self) -> bool:
		return self.status in (
			OutcomeStatus.LOW_CONFIDENCE,
			OutcomeStatus.NEEDS_BREAKDOWN,
			OutcomeStatus.NEEDS_MODEL_SELECTION,
			OutcomeStatus.STOPPED,
		)
