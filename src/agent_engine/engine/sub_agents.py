"""
Sub-Agent Scheduler - specialised agents run in dependency waves.

A task's complexity decides which roles are dispatched:
	< 5    no sub-agents
	5-7    implementer + tester, independent
	8-9    planner, then implementer + tester + reviewer in parallel
	10     as above plus a documenter

Agents whose dependencies have all resolved form a wave and run
concurrently; their outputs are merged into one context string.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config import MERGE_MODEL
from .router import estimate_cost

logger = logging.getLogger(__name__)


class SubAgentRole(str, Enum):
	PLANNER = "planner"
	IMPLEMENTER = "implementer"
	TESTER = "tester"
	REVIEWER = "reviewer"
	DOCUMENTER = "documenter"
	RESEARCHER = "researcher"


class BudgetMode(str, Enum):
	"""Cost/quality tradeoff used to pick models per role."""
	BALANCED = "balanced"
	QUALITY_FIRST = "quality_first"
	AGGRESSIVE_SAVE = "aggressive_save"


class MergeStrategy(str, Enum):
	CONCATENATE = "concatenate"
	AI_MERGE = "ai_merge"


_SONNET = "claude-sonnet-4-5-20250929"
_HAIKU = "claude-haiku-4-5-20251001"
_OPUS = "claude-opus-4-5-20251101"

ROLE_MODEL_MAP: dict[BudgetMode, dict[SubAgentRole, str]] = {
	BudgetMode.BALANCED: {
		SubAgentRole.PLANNER: _SONNET,
		SubAgentRole.IMPLEMENTER: _SONNET,
		SubAgentRole.TESTER: _HAIKU,
		SubAgentRole.REVIEWER: _SONNET,
		SubAgentRole.DOCUMENTER: _HAIKU,
		SubAgentRole.RESEARCHER: _HAIKU,
	},
	BudgetMode.QUALITY_FIRST: {
		SubAgentRole.PLANNER: _SONNET,
		SubAgentRole.IMPLEMENTER: _OPUS,
		SubAgentRole.TESTER: _SONNET,
		SubAgentRole.REVIEWER: _OPUS,
		SubAgentRole.DOCUMENTER: _SONNET,
		SubAgentRole.RESEARCHER: _SONNET,
	},
	BudgetMode.AGGRESSIVE_SAVE: {role: _HAIKU for role in SubAgentRole},
}

ROLE_MAX_TOKENS: dict[SubAgentRole, int] = {
	SubAgentRole.PLANNER: 8192,
	SubAgentRole.IMPLEMENTER: 16384,
	SubAgentRole.TESTER: 8192,
	SubAgentRole.REVIEWER: 4096,
	SubAgentRole.DOCUMENTER: 4096,
	SubAgentRole.RESEARCHER: 4096,
}

ROLE_SYSTEM_PROMPTS: dict[SubAgentRole, str] = {
	SubAgentRole.PLANNER: (
		"You are a technical planner sub-agent.\n"
		"Analyze the task and produce a detailed implementation plan.\n"
		"Focus on file structure, dependencies, and execution order.\n"
		"Output a JSON plan with steps, each containing: description, action, path, and reasoning.\n"
		"Every file must be accounted for."
	),
	SubAgentRole.IMPLEMENTER: (
		"You are an implementation sub-agent.\n"
		"Write production-quality code based on the plan.\n"
		"Follow the conventions already present in the repository.\n"
		"Output complete file contents with no placeholders."
	),
	SubAgentRole.TESTER: (
		"You are a testing sub-agent.\n"
		"Write tests for the given code covering happy paths, edge cases, and error scenarios.\n"
		"Use the test framework the repository already uses.\n"
		"Output complete test file contents ready to run."
	),
	SubAgentRole.REVIEWER: (
		"You are a code review sub-agent.\n"
		"Review the changes for correctness, security, and missing error handling.\n"
		"Output a JSON review with: issues (severity + description), suggestions, quality_score (1-10), and summary."
	),
	SubAgentRole.DOCUMENTER: (
		"You are a documentation sub-agent.\n"
		"Write clear, concise documentation for the code changes: what was built, "
		"how it connects to existing code, and any configuration needed.\n"
		"Output markdown suitable for a pull request description."
	),
	SubAgentRole.RESEARCHER: (
		"You are a research sub-agent.\n"
		"Search the provided context (memory, docs, code) and extract relevant information.\n"
		"Output a JSON summary with: findings, relevant_patterns, and recommendations."
	),
}

MERGE_SYSTEM_PROMPT = (
	"You are a merge agent. Combine the following sub-agent outputs into a single coherent context document.\n"
	"Preserve all important information: plans, code, tests, reviews, documentation.\n"
	"Remove redundancy and organize logically. Output the merged result directly."
)
MERGE_MAX_TOKENS = 8192

# Rough per-role token usage, for cost previews
TOKEN_ESTIMATES: dict[SubAgentRole, tuple[int, int]] = {
	SubAgentRole.PLANNER: (4000, 2000),
	SubAgentRole.IMPLEMENTER: (8000, 6000),
	SubAgentRole.TESTER: (4000, 3000),
	SubAgentRole.REVIEWER: (6000, 2000),
	SubAgentRole.DOCUMENTER: (4000, 2000),
	SubAgentRole.RESEARCHER: (4000, 1500),
}


def get_model_for_role(role: SubAgentRole, budget_mode: BudgetMode = BudgetMode.BALANCED) -> str:
	return ROLE_MODEL_MAP[BudgetMode(budget_mode)][role]


@dataclass
class SubAgent:
	"""One node of the sub-agent graph. input_context is enriched before it runs."""
	id: str
	role: SubAgentRole
	model: str
	system_prompt: str
	input_context: str
	max_tokens: int
	depends_on: list[str] = field(default_factory=list)


@dataclass
class SubAgentResult:
	id: str
	role: SubAgentRole
	model: str
	output: str = ""
	cost_usd: float = 0.0
	tokens_used: int = 0
	duration_ms: int = 0
	success: bool = False
	error: Optional[str] = None


@dataclass
class SubAgentPlan:
	agents: list[SubAgent] = field(default_factory=list)
	merge_strategy: MergeStrategy = MergeStrategy.CONCATENATE


def plan_sub_agents(
	task: str,
	plan_summary: str,
	complexity: int,
	budget_mode: BudgetMode = BudgetMode.BALANCED,
) -> SubAgentPlan:
	"""
	Build the sub-agent graph for a task.

	Args:
		task: Task description
		plan_summary: Numbered summary of the current plan
		complexity: Estimated complexity, 1-10
		budget_mode: Model selection profile

	Returns:
		SubAgentPlan with agents in dispatch order (ids sub-1..sub-n)
	"""
	if complexity < 5:
		return SubAgentPlan(agents=[], merge_strategy=MergeStrategy.CONCATENATE)

	budget_mode = BudgetMode(budget_mode)
	agents: list[SubAgent] = []

	def add(role: SubAgentRole, input_context: str, depends_on: Optional[list[str]] = None) -> str:
		agent_id = f"sub-{len(agents) + 1}"
		agents.append(SubAgent(
			id=agent_id,
			role=role,
			model=get_model_for_role(role, budget_mode),
			system_prompt=ROLE_SYSTEM_PROMPTS[role],
			input_context=input_context,
			max_tokens=ROLE_MAX_TOKENS[role],
			depends_on=list(depends_on or []),
		))
		return agent_id

	if complexity >= 8:
		planner_id = add(SubAgentRole.PLANNER, f"Task: {task}\n\nExisting plan:\n{plan_summary}")
		add(SubAgentRole.IMPLEMENTER, f"Task: {task}", [planner_id])
		add(SubAgentRole.TESTER, f"Task: {task}", [planner_id])
		add(SubAgentRole.REVIEWER, f"Task: {task}", [planner_id])
		if complexity >= 10:
			add(SubAgentRole.DOCUMENTER, f"Task: {task}", [planner_id])
		return SubAgentPlan(agents=agents, merge_strategy=MergeStrategy.AI_MERGE)

	add(SubAgentRole.IMPLEMENTER, f"Task: {task}\n\nPlan:\n{plan_summary}")
	add(SubAgentRole.TESTER, f"Task: {task}\n\nPlan:\n{plan_summary}")
	return SubAgentPlan(agents=agents, merge_strategy=MergeStrategy.CONCATENATE)


async def _execute_one(agent: SubAgent, ai) -> SubAgentResult:
	start = time.monotonic()
	try:
		response = await ai.complete(
			model=agent.model,
			system=agent.system_prompt,
			prompt=agent.input_context,
			max_tokens=agent.max_tokens,
		)
	except Exception as e:
		logger.warning(f"Sub-agent {agent.id} ({agent.role.value}) failed: {e}")
		return SubAgentResult(
			id=agent.id,
			role=agent.role,
			model=agent.model,
			duration_ms=int((time.monotonic() - start) * 1000),
			success=False,
			error=str(e),
		)

	return SubAgentResult(
		id=agent.id,
		role=agent.role,
		model=response.model_used or agent.model,
		output=response.content,
		cost_usd=response.cost_usd,
		tokens_used=response.tokens_used,
		duration_ms=int((time.monotonic() - start) * 1000),
		success=True,
	)


async def execute_sub_agents(plan: SubAgentPlan, ai) -> list[SubAgentResult]:
	"""
	Run the graph wave by wave.

	Every wave waits for all of its agents. A failing agent yields a
	result with success=False and never aborts its siblings. If no agent
	is ready while some are still pending, the deadlock is logged and the
	unreached agents are left out of the results.
	"""
	if not plan.agents:
		return []

	results: dict[str, SubAgentResult] = {}
	pending = {a.id for a in plan.agents}

	while pending:
		ready = [
			a for a in plan.agents
			if a.id in pending and all(dep in results for dep in a.depends_on)
		]
		if not ready:
			logger.error(f"Sub-agent deadlock: no ready agents, pending={sorted(pending)}")
			break

		for agent in ready:
			for dep_id in agent.depends_on:
				dep = results[dep_id]
				if dep.success:
					agent.input_context += f"\n\n## Output from {dep.role.value} ({dep_id}):\n{dep.output}"

		settled = await asyncio.gather(*(_execute_one(a, ai) for a in ready), return_exceptions=True)

		for agent, outcome in zip(ready, settled):
			if isinstance(outcome, BaseException):
				outcome = SubAgentResult(
					id=agent.id, role=agent.role, model=agent.model, success=False, error=str(outcome),
				)
			results[agent.id] = outcome
			pending.discard(agent.id)

	return list(results.values())


def _concatenate(results: list[SubAgentResult]) -> str:
	return "\n\n---\n\n".join(
		f"## Sub-agent: {r.role.value} ({r.model})\n\n{r.output}" for r in results
	)


async def merge_results(
	results: list[SubAgentResult],
	strategy: MergeStrategy,
	ai=None,
	merge_model: str = MERGE_MODEL,
) -> str:
	"""Merge successful outputs into one context string; empty when none succeeded."""
	successful = [r for r in results if r.success]
	if not successful:
		return ""

	if MergeStrategy(strategy) == MergeStrategy.CONCATENATE or ai is None:
		return _concatenate(successful)

	combined = "\n\n---\n\n".join(f"## {r.role.value}\n{r.output}" for r in successful)
	try:
		response = await ai.complete(
			model=merge_model,
			system=MERGE_SYSTEM_PROMPT,
			prompt=combined,
			max_tokens=MERGE_MAX_TOKENS,
		)
		return response.content
	except Exception as e:
		logger.warning(f"AI merge failed, falling back to concatenation: {e}")
		return _concatenate(successful)


def sum_costs(results: list[SubAgentResult]) -> float:
	return sum(r.cost_usd for r in results)


def sum_tokens(results: list[SubAgentResult]) -> int:
	return sum(r.tokens_used for r in results)


def group_into_waves(agents: list[SubAgent]) -> list[list[SubAgent]]:
	"""Split agents into the waves execute_sub_agents would run."""
	waves: list[list[SubAgent]] = []
	resolved: set[str] = set()
	remaining = list(agents)

	while remaining:
		ready = [a for a in remaining if all(dep in resolved for dep in a.depends_on)]
		if not ready:
			break
		waves.append(ready)
		resolved.update(a.id for a in ready)
		remaining = [a for a in remaining if a.id not in resolved]

	return waves


def count_parallel_groups(agents: list[SubAgent]) -> int:
	return len(group_into_waves(agents))


@dataclass
class AgentCostEstimate:
	role: SubAgentRole
	model: str
	estimated_input_tokens: int
	estimated_output_tokens: int
	estimated_cost_usd: float


@dataclass
class CostPreview:
	without_sub_agents: float
	with_sub_agents: float
	speedup_estimate: str
	agents: list[AgentCostEstimate] = field(default_factory=list)


def estimate_cost_preview(complexity: int, budget_mode: BudgetMode = BudgetMode.BALANCED) -> CostPreview:
	"""Compare a single-model run against dispatching sub-agents."""
	base_model = get_model_for_role(SubAgentRole.IMPLEMENTER, budget_mode)
	base_cost = estimate_cost(12_000, 8_000, base_model).total_cost

	plan = plan_sub_agents("estimate", "estimate", complexity, budget_mode)
	if not plan.agents:
		return CostPreview(without_sub_agents=base_cost, with_sub_agents=base_cost, speedup_estimate="1x")

	estimates = []
	for agent in plan.agents:
		input_tokens, output_tokens = TOKEN_ESTIMATES[agent.role]
		estimates.append(AgentCostEstimate(
			role=agent.role,
			model=agent.model,
			estimated_input_tokens=input_tokens,
			estimated_output_tokens=output_tokens,
			estimated_cost_usd=estimate_cost(input_tokens, output_tokens, agent.model).total_cost,
		))

	groups = count_parallel_groups(plan.agents)
	speedup = f"{len(plan.agents) / groups:.1f}x" if groups else "1x"

	return CostPreview(
		without_sub_agents=base_cost,
		with_sub_agents=sum(e.estimated_cost_usd for e in estimates),
		speedup_estimate=speedup,
		agents=estimates,
	)
