"""Shared test fixtures and helpers for agent-engine tests."""

from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from agent_engine.config import Config
from agent_engine.engine.task_context import TaskContext
from agent_engine.models import (
	BuildResult,
	ComplexityAssessment,
	CompletionResult,
	ConfidenceAssessment,
	ContextBundle,
	Diagnosis,
	FileChange,
	Plan,
	PlanStep,
	RelevantFile,
	ReviewResult,
	ValidationResult,
)
from agent_engine.services import EngineServices


def make_config(tmp_path: Path, **overrides) -> Config:
	"""Config rooted in tmp_path with no backoff delay."""
	values = {
		"config_dir": tmp_path / "config",
		"data_dir": tmp_path / "data",
		"environment_backoff_seconds": 0.0,
	}
	values.update(overrides)
	return Config(**values)


def make_context(**overrides) -> TaskContext:
	"""Create a TaskContext for an owner/repo task."""
	values = {
		"task_id": "task-1",
		"conversation_id": "conv-1",
		"repo_owner": "acme",
		"repo_name": "widgets",
		"task_description": "Add a health check endpoint",
	}
	values.update(overrides)
	return TaskContext(**values)


def make_bundle(**overrides) -> ContextBundle:
	"""A small non-empty repository bundle."""
	values = {
		"tree": "src/\n  app.py\n  routes.py\nREADME.md",
		"tree_list": ["src/app.py", "src/routes.py", "README.md"],
		"manifest": {"name": "widgets", "dependencies": {"flask": "3.0"}},
		"files": [RelevantFile(path="src/app.py", content="app = Flask(__name__)\n")],
		"memory": ["Routes live in src/routes.py"],
		"docs": ["Flask routing guide"],
	}
	values.update(overrides)
	return ContextBundle(**values)


def make_plan(*descriptions: str, cost_usd: float = 0.01, tokens_used: int = 100) -> Plan:
	descriptions = descriptions or ("Add /health route", "Add test for /health")
	return Plan(
		steps=[PlanStep(description=d, path=f"src/step_{i}.py") for i, d in enumerate(descriptions)],
		cost_usd=cost_usd,
		tokens_used=tokens_used,
	)


def make_build(*files: tuple[str, str], cost_usd: float = 0.02, tokens_used: int = 500) -> BuildResult:
	files = files or (("src/routes.py", "def health():\n\treturn 'ok'\n"),)
	return BuildResult(
		files=[FileChange(path=path, content=content) for path, content in files],
		cost_usd=cost_usd,
		tokens_used=tokens_used,
	)


def passed() -> ValidationResult:
	return ValidationResult(success=True, output="all tests passed")


def failed(output: str = "AssertionError: expected 200") -> ValidationResult:
	return ValidationResult(success=False, output=output)


def diagnosis(root_cause: str, reason: str = "test reason", suggested_action: Optional[str] = None) -> Diagnosis:
	return Diagnosis(root_cause=root_cause, reason=reason, suggested_action=suggested_action, tokens_used=50)


def make_ai(
	confidence: int = 95,
	complexity: int = 5,
	recommended_action: str = "proceed",
) -> MagicMock:
	"""AI capability fake with happy-path defaults."""
	ai = MagicMock()
	ai.plan_task = AsyncMock(return_value=make_plan())
	ai.revise_plan = AsyncMock(return_value=make_plan("Revised step"))
	ai.diagnose_failure = AsyncMock(return_value=diagnosis("implementation_error"))
	ai.assess_confidence = AsyncMock(return_value=ConfidenceAssessment(
		overall=confidence,
		recommended_action=recommended_action,
		uncertainties=["Which port?"],
		clarifying_questions=["Should it check the database?"],
		suggested_subtasks=["Add route", "Add test"],
		tokens_used=200,
	))
	ai.assess_complexity = AsyncMock(return_value=ComplexityAssessment(score=complexity, reasoning="medium"))
	ai.complete = AsyncMock(return_value=CompletionResult(content="output", cost_usd=0.001, tokens_used=10))
	ai.review_code = AsyncMock(return_value=ReviewResult(summary="Looks good", tokens_used=300))
	return ai


def make_services(
	ai: Optional[MagicMock] = None,
	validations: Optional[list[ValidationResult]] = None,
	**optional,
) -> EngineServices:
	"""EngineServices with mocked builder and sandbox; validation results are consumed in order."""
	builder = MagicMock()
	builder.build = AsyncMock(return_value=make_build())

	sandbox = MagicMock()
	sandbox.create = AsyncMock(return_value="sbx-1")
	sandbox.validate = AsyncMock(side_effect=list(validations) if validations else None, return_value=passed())
	sandbox.destroy = AsyncMock(return_value=None)

	return EngineServices(ai=ai or make_ai(), builder=builder, sandbox=sandbox, **optional)


def make_tracker(cancelled: bool = False) -> MagicMock:
	tracker = MagicMock()
	tracker.is_cancelled = AsyncMock(return_value=cancelled)
	tracker.update_status = AsyncMock(return_value=None)
	return tracker


def make_lock(acquired: bool = True) -> MagicMock:
	lock = MagicMock()
	lock.acquire = AsyncMock(return_value=acquired)
	lock.release = AsyncMock(return_value=None)
	return lock
