"""Rich views for phase context profiles and recorded phase metrics."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..engine.metrics import PHASE_TOKEN_LIMITS, PhaseTracker, is_over_token_budget
from ..engine.profiler import ALL_FIELDS, PHASE_PROFILES
from .utils import format_cost, format_duration


def render_phase_profiles(console: Optional[Console] = None) -> None:
	"""Render which context fields each phase sees and its token budget."""
	console = console or Console()

	table = Table(title="Phase Context Profiles")
	table.add_column("Phase", style="cyan")
	table.add_column("Fields")
	table.add_column("Context budget", justify="right")

	for name, profile in PHASE_PROFILES.items():
		if profile.fields == ALL_FIELDS:
			shown = "all"
		else:
			shown = ", ".join(sorted(profile.fields)) or "-"
		table.add_row(name, shown, str(profile.max_tokens))

	console.print(table)

	limits = Table(title="Phase Token Limits (warning only)")
	limits.add_column("Phase", style="cyan")
	limits.add_column("Limit", justify="right")
	for name, limit in PHASE_TOKEN_LIMITS.items():
		limits.add_row(name, str(limit))
	console.print(limits)


def render_phase_metrics(tracker: PhaseTracker, console: Optional[Console] = None) -> None:
	"""Render per-phase usage recorded during a task."""
	console = console or Console()
	phases = tracker.get_all()

	if not phases:
		console.print("[dim]No phase metrics recorded.[/dim]")
		return

	title = f"Phase Metrics ({tracker.task_id})" if tracker.task_id else "Phase Metrics"
	table = Table(title=title)
	table.add_column("Phase", style="cyan")
	table.add_column("Calls", justify="right")
	table.add_column("Tokens", justify="right")
	table.add_column("Cost", justify="right")
	table.add_column("Duration", justify="right")
	table.add_column("Model")

	for m in phases:
		tokens = m.tokens_input + m.tokens_output
		style = "red" if is_over_token_budget(m.phase, tokens) else "green"
		table.add_row(
			m.phase,
			str(m.ai_calls),
			f"[{style}]{tokens}[/{style}]",
			format_cost(m.cost_usd),
			format_duration(m.duration_ms / 1000),
			m.model or "-",
		)

	console.print(table)
