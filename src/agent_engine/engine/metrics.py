"""
Per-phase metrics for a single task execution.

Tracks tokens, cost, duration, and model usage for each phase, and
logs a warning when a phase exceeds its token limit.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Soft limits: exceeding one only logs a warning
PHASE_TOKEN_LIMITS: dict[str, int] = {
	"confidence": 2_000,
	"planning": 8_000,
	"building": 50_000,
	"diagnosis": 4_000,
	"review": 8_000,
}


def is_over_token_budget(phase: str, tokens_used: int) -> bool:
	limit = PHASE_TOKEN_LIMITS.get(phase)
	if not limit:
		return False
	return tokens_used > limit


def warn_if_over_budget(phase: str, tokens_used: int, task_id: Optional[str] = None) -> bool:
	"""Log a warning if the phase token budget is exceeded. Returns True when over."""
	if not is_over_token_budget(phase, tokens_used):
		return False
	limit = PHASE_TOKEN_LIMITS[phase]
	logger.warning(
		f"Phase token budget exceeded: phase={phase} used={tokens_used} "
		f"limit={limit} overage={tokens_used - limit} task={task_id}"
	)
	return True


@dataclass
class PhaseMetrics:
	"""Aggregated usage of one phase."""
	phase: str
	tokens_input: int = 0
	tokens_output: int = 0
	cached_tokens: int = 0
	cost_usd: float = 0.0
	duration_ms: int = 0
	model: str = ""
	ai_calls: int = 0

	def to_dict(self) -> dict:
		return asdict(self)


class PhaseTracker:
	"""In-memory tracker; starting a phase ends the one still open."""

	def __init__(self, task_id: Optional[str] = None):
		self.task_id = task_id
		self._completed: list[PhaseMetrics] = []
		self._current: Optional[PhaseMetrics] = None
		self._started_at: float = 0.0

	@property
	def current_phase(self) -> Optional[str]:
		return self._current.phase if self._current else None

	def start(self, phase: str) -> None:
		if self._current is not None:
			self.end()
		self._current = PhaseMetrics(phase=phase)
		self._started_at = time.monotonic()

	def record_call(
		self,
		tokens_input: int = 0,
		tokens_output: int = 0,
		cached_tokens: int = 0,
		cost_usd: float = 0.0,
		model: str = "",
	) -> None:
		"""Add one AI call to the open phase. Ignored when no phase is open."""
		current = self._current
		if current is None:
			return
		current.tokens_input += tokens_input
		current.tokens_output += tokens_output
		current.cached_tokens += cached_tokens
		current.cost_usd += cost_usd
		current.model = model or current.model
		current.ai_calls += 1
		warn_if_over_budget(current.phase, current.tokens_input + current.tokens_output, self.task_id)

	def _snapshot(self) -> PhaseMetrics:
		current = self._current
		return PhaseMetrics(
			phase=current.phase,
			tokens_input=current.tokens_input,
			tokens_output=current.tokens_output,
			cached_tokens=current.cached_tokens,
			cost_usd=current.cost_usd,
			duration_ms=int((time.monotonic() - self._started_at) * 1000),
			model=current.model,
			ai_calls=current.ai_calls,
		)

	def end(self) -> Optional[PhaseMetrics]:
		if self._current is None:
			return None
		metrics = self._snapshot()
		self._completed.append(metrics)
		self._current = None
		return metrics

	def get_all(self) -> list[PhaseMetrics]:
		"""Completed phases plus the open one, if any."""
		if self._current is not None:
			return [*self._completed, self._snapshot()]
		return list(self._completed)
