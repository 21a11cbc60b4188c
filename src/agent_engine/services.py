"""
Collaborator interfaces consumed by the engine.

The engine never talks to a model provider, sandbox, database or chat
directly. Callers plug in objects satisfying these protocols through
EngineServices; every optional collaborator may be left as None.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from .models import (
	BuildResult,
	ComplexityAssessment,
	CompletionResult,
	ConfidenceAssessment,
	ContextBundle,
	Diagnosis,
	DiagnosisRequest,
	FileChange,
	MemoryHit,
	Plan,
	PlanRequest,
	ReviewResult,
	ValidationResult,
)


@runtime_checkable
class AIService(Protocol):
	"""Language-model capabilities. Results carry their own cost/token usage."""

	async def plan_task(self, request: PlanRequest) -> Plan: ...

	async def revise_plan(
		self, task: str, original_plan: Plan, diagnosis: Diagnosis, constraints: list[str]
	) -> Plan: ...

	async def diagnose_failure(self, request: DiagnosisRequest) -> Diagnosis: ...

	async def assess_confidence(self, task: str, bundle: ContextBundle) -> ConfidenceAssessment: ...

	async def assess_complexity(
		self, task: str, project_structure: str, file_count: int
	) -> ComplexityAssessment: ...

	async def complete(self, model: str, system: str, prompt: str, max_tokens: int) -> CompletionResult: ...

	async def review_code(self, task: str, files: list[FileChange], bundle: ContextBundle) -> ReviewResult: ...


@runtime_checkable
class BuilderService(Protocol):
	async def build(self, task: str, plan: Plan, sandbox_id: str, model: str) -> BuildResult: ...


@runtime_checkable
class SandboxService(Protocol):
	async def create(self, repo_owner: str, repo_name: str, branch: str) -> str: ...

	async def validate(self, sandbox_id: str) -> ValidationResult: ...

	async def destroy(self, sandbox_id: str) -> None: ...


@runtime_checkable
class ContextProvider(Protocol):
	async def build_context(self, ctx: Any) -> ContextBundle: ...


@runtime_checkable
class MemoryService(Protocol):
	async def search(self, query: str, limit: int = 5, memory_type: Optional[str] = None) -> list[MemoryHit]: ...


@runtime_checkable
class TaskTracker(Protocol):
	"""External task tracker: cancellation oracle and status sink."""

	async def is_cancelled(self, task_id: str) -> bool: ...

	async def update_status(self, task_id: str, status: str, message: Optional[str] = None) -> None: ...


@runtime_checkable
class CheckpointStore(Protocol):
	async def write(
		self, job_id: str, phase: str, snapshot: dict, cost_delta: Optional[float] = None
	) -> None: ...


@runtime_checkable
class RepoLock(Protocol):
	"""Non-blocking advisory lock per repository."""

	async def acquire(self, owner: str, name: str, holder: str) -> bool: ...

	async def release(self, owner: str, name: str, holder: str) -> None: ...


@runtime_checkable
class ProgressReporter(Protocol):
	async def report(self, ctx: Any, message: str, status: str = "working") -> None: ...


@dataclass
class AuditEvent:
	"""A single audited engine action."""
	action: str
	task_id: str
	repo: str
	success: bool
	duration_ms: int = 0
	details: dict = field(default_factory=dict)
	error: Optional[str] = None
	timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@runtime_checkable
class AuditSink(Protocol):
	async def record(self, event: AuditEvent) -> None: ...


@dataclass
class EngineServices:
	"""Every collaborator the engine uses. Only the first three are required."""
	ai: AIService
	builder: BuilderService
	sandbox: SandboxService
	context_provider: Optional[ContextProvider] = None
	memory: Optional[MemoryService] = None
	tracker: Optional[TaskTracker] = None
	checkpoints: Optional[CheckpointStore] = None
	repo_lock: Optional[RepoLock] = None
	reporter: Optional[ProgressReporter] = None
	audit: Optional[AuditSink] = None
