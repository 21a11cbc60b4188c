"""Engine module - Phases, confidence routing, retry loop, and sub-agents."""

from .execution import ExecutionResult, PlanExecutor, RetryStrategy, execute_plan
from .runner import RunOptions, TaskRunner
from .state_machine import Phase, PhaseMachine
from .task_context import ModelMode, OutcomeStatus, TaskContext, TaskOutcome

__all__ = [
	"ExecutionResult",
	"ModelMode",
	"OutcomeStatus",
	"Phase",
	"PhaseMachine",
	"PlanExecutor",
	"RetryStrategy",
	"RunOptions",
	"TaskContext",
	"TaskOutcome",
	"TaskRunner",
	"execute_plan",
]
