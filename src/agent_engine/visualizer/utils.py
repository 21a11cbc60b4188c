"""Shared utilities for visualizer views."""


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '1.2s', '45ms', '2m 3s'."""
	if seconds < 0.001:
		return "<1ms"
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	secs = seconds % 60
	return f"{minutes}m {secs:.0f}s"


def format_cost(usd: float) -> str:
	"""Format a USD amount; sub-cent values keep four decimals."""
	if usd < 0.01:
		return f"${usd:.4f}"
	return f"${usd:.2f}"


def tier_style(tier: int) -> str:
	"""Return a Rich style string for a model tier."""
	if tier >= 5:
		return "magenta"
	if tier >= 3:
		return "cyan"
	return "green"
