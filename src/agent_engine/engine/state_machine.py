"""
Phase state machine for a single task execution.

Phases only move forward. Illegal transitions either raise (strict mode)
or are logged and allowed (permissive mode, the default).
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..errors import IllegalTransitionError

logger = logging.getLogger(__name__)


class Phase(str, Enum):
	"""Top-level phase of a task."""
	PREPARING = "preparing"
	CONTEXT = "context"
	CONFIDENCE = "confidence"
	PLANNING = "planning"
	BUILDING = "building"
	REVIEWING = "reviewing"
	PENDING_REVIEW = "pending_review"
	NEEDS_INPUT = "needs_input"
	COMPLETED = "completed"
	STOPPED = "stopped"
	FAILED = "failed"


VALID_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
	Phase.PREPARING: frozenset({Phase.CONTEXT, Phase.FAILED, Phase.STOPPED}),
	Phase.CONTEXT: frozenset({Phase.CONFIDENCE, Phase.FAILED, Phase.STOPPED}),
	Phase.CONFIDENCE: frozenset({Phase.PLANNING, Phase.NEEDS_INPUT, Phase.FAILED}),
	Phase.PLANNING: frozenset({Phase.BUILDING, Phase.FAILED, Phase.STOPPED}),
	Phase.BUILDING: frozenset({Phase.REVIEWING, Phase.FAILED, Phase.STOPPED}),
	Phase.REVIEWING: frozenset({Phase.PENDING_REVIEW, Phase.COMPLETED, Phase.FAILED}),
	Phase.PENDING_REVIEW: frozenset(),
	Phase.NEEDS_INPUT: frozenset(),
	Phase.COMPLETED: frozenset(),
	Phase.STOPPED: frozenset(),
	Phase.FAILED: frozenset(),
}

TERMINAL_PHASES = frozenset(phase for phase, targets in VALID_TRANSITIONS.items() if not targets)


@dataclass
class Transition:
	"""A recorded phase change."""
	from_phase: Phase
	to_phase: Phase
	timestamp: float = field(default_factory=time.time)
	legal: bool = True


class PhaseMachine:
	"""Tracks the current phase of one task and its transition history."""

	def __init__(self, task_id: str, strict: bool = False, initial: Phase = Phase.PREPARING):
		self.task_id = task_id
		self.strict = strict
		self._current = initial
		self.history: list[Transition] = []

	@property
	def current(self) -> Phase:
		return self._current

	@property
	def is_terminal(self) -> bool:
		return self._current in TERMINAL_PHASES

	def can_transition_to(self, next_phase: Phase) -> bool:
		return next_phase in VALID_TRANSITIONS.get(self._current, frozenset())

	def transition_to(self, next_phase: Phase) -> Phase:
		"""
		Move to the next phase.

		Raises:
			IllegalTransitionError: In strict mode, when the transition is not allowed.
		"""
		from_phase = self._current
		legal = self.can_transition_to(next_phase)
		if not legal:
			logger.warning(f"Illegal transition: {from_phase.value} -> {next_phase.value} for task {self.task_id}")
			if self.strict:
				raise IllegalTransitionError(from_phase.value, next_phase.value)

		self._current = next_phase
		self.history.append(Transition(from_phase=from_phase, to_phase=next_phase, legal=legal))
		return next_phase


def validate_sequence(phases: Iterable[Phase]) -> tuple[bool, Optional[int]]:
	"""Check a phase sequence against the transition table.

	Returns:
		(valid, index of the first illegal phase or None)
	"""
	phases = list(phases)
	for i in range(1, len(phases)):
		if phases[i] not in VALID_TRANSITIONS.get(phases[i - 1], frozenset()):
			return False, i
	return True, None
