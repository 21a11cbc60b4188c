"""Rich views for sub-agent graphs and their cost previews."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..engine.sub_agents import BudgetMode, estimate_cost_preview, group_into_waves, plan_sub_agents
from .utils import format_cost


def render_cost_preview(
	complexity: int,
	budget_mode: BudgetMode = BudgetMode.BALANCED,
	console: Optional[Console] = None,
) -> None:
	"""Render the estimated cost of a run with and without sub-agents."""
	console = console or Console()
	preview = estimate_cost_preview(complexity, budget_mode)

	if not preview.agents:
		console.print(
			f"[dim]Complexity {complexity} dispatches no sub-agents "
			f"(single run ~{format_cost(preview.without_sub_agents)}).[/dim]"
		)
		return

	table = Table(title=f"Sub-agent Cost Preview (complexity {complexity}, {BudgetMode(budget_mode).value})")
	table.add_column("Role", style="cyan")
	table.add_column("Model")
	table.add_column("In tokens", justify="right")
	table.add_column("Out tokens", justify="right")
	table.add_column("Cost", justify="right")

	for a in preview.agents:
		table.add_row(
			a.role.value,
			a.model,
			str(a.estimated_input_tokens),
			str(a.estimated_output_tokens),
			format_cost(a.estimated_cost_usd),
		)

	console.print(table)
	console.print(
		f"Without sub-agents: {format_cost(preview.without_sub_agents)}  "
		f"With sub-agents: {format_cost(preview.with_sub_agents)}  "
		f"Speedup: {preview.speedup_estimate}"
	)


def render_sub_agent_waves(
	complexity: int,
	budget_mode: BudgetMode = BudgetMode.BALANCED,
	console: Optional[Console] = None,
) -> None:
	"""Render the waves in which the sub-agent graph would execute."""
	console = console or Console()
	plan = plan_sub_agents("preview", "preview", complexity, budget_mode)

	if not plan.agents:
		console.print(f"[dim]Complexity {complexity} dispatches no sub-agents.[/dim]")
		return

	table = Table(title=f"Sub-agent Waves (merge: {plan.merge_strategy.value})")
	table.add_column("Wave", justify="right")
	table.add_column("Agent", style="cyan")
	table.add_column("Role")
	table.add_column("Model")
	table.add_column("Depends on")

	for i, wave in enumerate(group_into_waves(plan.agents), start=1):
		for agent in wave:
			table.add_row(str(i), agent.id, agent.role.value, agent.model, ", ".join(agent.depends_on) or "-")

	console.print(table)
