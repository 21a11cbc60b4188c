"""Autonomous task-execution engine."""

from .config import Config, get_config, load_config
from .engine import PlanExecutor, RunOptions, TaskContext, TaskOutcome, TaskRunner
from .errors import EngineError, RepoLockedError, ValidationExhaustedError
from .services import EngineServices

__all__ = [
	"Config",
	"EngineError",
	"EngineServices",
	"PlanExecutor",
	"RepoLockedError",
	"RunOptions",
	"TaskContext",
	"TaskOutcome",
	"TaskRunner",
	"ValidationExhaustedError",
	"get_config",
	"load_config",
]
