"""Rich view of the model registry."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..engine.router import MODEL_REGISTRY, get_upgrade_model
from .utils import format_cost, tier_style


def render_model_registry(console: Optional[Console] = None, provider: Optional[str] = None) -> None:
	"""Render every registered model with pricing and upgrade path."""
	console = console or Console()
	models = [m for m in MODEL_REGISTRY.values() if provider is None or m.provider == provider]

	if not models:
		console.print(f"[dim]No models registered for provider '{provider}'.[/dim]")
		return

	table = Table(title="Model Registry")
	table.add_column("Model", style="cyan")
	table.add_column("Provider")
	table.add_column("Tier", justify="right")
	table.add_column("In / 1M", justify="right")
	table.add_column("Out / 1M", justify="right")
	table.add_column("Context", justify="right")
	table.add_column("Upgrade")

	for m in sorted(models, key=lambda m: (m.tier, m.id)):
		style = tier_style(m.tier)
		table.add_row(
			m.id,
			m.provider,
			f"[{style}]{m.tier}[/{style}]",
			format_cost(m.input_cost_per_1m),
			format_cost(m.output_cost_per_1m),
			f"{m.context_window // 1000}k",
			get_upgrade_model(m.id) or "-",
		)

	console.print(table)
