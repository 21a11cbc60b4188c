"""
Engine Models - Pydantic schemas for capability inputs and outputs.

Defines plans, diagnoses, confidence and complexity assessments,
build/validation results, and the context bundle handed between phases.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class StepAction(str, Enum):
	"""Kind of change a plan step performs."""
	CREATE_FILE = "create_file"
	MODIFY_FILE = "modify_file"
	DELETE_FILE = "delete_file"
	RUN_COMMAND = "run_command"


class PlanStep(BaseModel):
	"""A single ordered step of a plan."""
	description: str = Field(description="What the step does")
	action: StepAction = Field(default=StepAction.MODIFY_FILE)
	path: Optional[str] = Field(default=None, description="Target file, for file actions")
	content: Optional[str] = Field(default=None, description="Proposed file content")
	command: Optional[str] = Field(default=None, description="Shell command, for run_command")


class Plan(BaseModel):
	"""Output of the planning and plan-revision capabilities."""
	steps: list[PlanStep] = Field(default_factory=list)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)

	def summary(self) -> str:
		"""Numbered one-line-per-step rendering of the plan."""
		return "\n".join(f"{i + 1}. {step.description}" for i, step in enumerate(self.steps))


class RootCause(str, Enum):
	"""Classification of a validation failure."""
	BAD_PLAN = "bad_plan"
	IMPLEMENTATION_ERROR = "implementation_error"
	MISSING_CONTEXT = "missing_context"
	IMPOSSIBLE_TASK = "impossible_task"
	ENVIRONMENT_ERROR = "environment_error"
	UNCLASSIFIED = "unclassified"


class Diagnosis(BaseModel):
	"""Root-cause analysis of a failed validation."""
	root_cause: str = Field(description="Root cause label reported by the diagnosis capability")
	reason: Optional[str] = Field(default=None)
	suggested_action: Optional[str] = Field(default=None)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)

	@property
	def category(self) -> RootCause:
		try:
			return RootCause(self.root_cause)
		except ValueError:
			return RootCause.UNCLASSIFIED


class ConfidenceAssessment(BaseModel):
	"""Output of the confidence capability."""
	overall: int = Field(description="Overall confidence, 0-100")
	recommended_action: str = Field(default="proceed", description="proceed, clarify or break_down")
	uncertainties: list[str] = Field(default_factory=list)
	clarifying_questions: list[str] = Field(default_factory=list)
	suggested_subtasks: list[str] = Field(default_factory=list)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)


class ComplexityAssessment(BaseModel):
	"""Output of the complexity capability."""
	score: int = Field(ge=1, le=10, description="Task complexity, 1-10")
	reasoning: str = Field(default="")


class FileChange(BaseModel):
	"""A file produced by the build capability."""
	path: str
	content: str
	action: str = Field(default="modify", description="create, modify or delete")


class BuildResult(BaseModel):
	"""Output of the build capability."""
	files: list[FileChange] = Field(default_factory=list)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)


class ValidationResult(BaseModel):
	"""Output of the sandbox validate call."""
	success: bool
	output: str = Field(default="")


class MemoryHit(BaseModel):
	"""A long-term memory search result."""
	content: str
	similarity: float = Field(default=0.0)
	memory_type: Optional[str] = Field(default=None)


class CompletionResult(BaseModel):
	"""Output of a free-form completion call (sub-agents, merge)."""
	content: str
	model_used: Optional[str] = Field(default=None)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)


class ReviewResult(BaseModel):
	"""Output of the review capability."""
	summary: str = Field(default="")
	approved: bool = Field(default=True)
	comments: list[str] = Field(default_factory=list)
	cost_usd: float = Field(default=0.0)
	tokens_used: int = Field(default=0)


class RelevantFile(BaseModel):
	"""A repository file judged relevant to the task."""
	model_config = ConfigDict(frozen=True)

	path: str
	content: str


class ToolDescriptor(BaseModel):
	"""An external tool discovered for the repository."""
	model_config = ConfigDict(frozen=True)

	name: str
	description: str = ""
	server_name: str = ""


class ContextBundle(BaseModel):
	"""
	Everything gathered about the repository before planning.

	Immutable: phase scoping and trimming return new bundles.
	"""
	model_config = ConfigDict(frozen=True)

	tree: str = Field(default="", description="Rendered project tree")
	tree_list: list[str] = Field(default_factory=list, description="Flat list of repository paths")
	manifest: dict[str, Any] = Field(default_factory=dict, description="Dependency manifest")
	files: list[RelevantFile] = Field(default_factory=list)
	memory: list[str] = Field(default_factory=list)
	docs: list[str] = Field(default_factory=list)
	tools: list[ToolDescriptor] = Field(default_factory=list)

	@property
	def is_empty_repo(self) -> bool:
		return not self.tree_list

	@property
	def file_count(self) -> int:
		return len(self.tree_list)


class FileDelta(BaseModel):
	"""A changed file reduced to its diff, for delta replanning."""
	path: str
	diff: str


class PlanRequest(BaseModel):
	"""Input of the planning capability."""
	task: str
	project_structure: str = ""
	relevant_files: list[RelevantFile] = Field(default_factory=list)
	changed_files: list[FileDelta] = Field(default_factory=list, description="Delta retries send diffs instead of files")
	memory: list[str] = Field(default_factory=list)
	docs: list[str] = Field(default_factory=list)
	tools: list[ToolDescriptor] = Field(default_factory=list)
	previous_attempt: Optional[str] = Field(default=None, description="Summary of the plan that failed")
	error_message: Optional[str] = Field(default=None)
	model: Optional[str] = Field(default=None)


class DiagnosisRequest(BaseModel):
	"""Input of the diagnosis capability."""
	task: str
	plan: list[PlanStep] = Field(default_factory=list)
	error: str
	previous_errors: list[str] = Field(default_factory=list)
	code_context: str = ""
	model: Optional[str] = Field(default=None)
