"""
Model router - registry of execution models and complexity-based selection.

Complexity scale 1-10:
	1-3   simple (formatting, renames, small fixes)   -> economy tier
	4-7   medium (features, refactoring)              -> balanced tier
	8-10  complex (architecture, multi-service work)  -> premium tier
"""

from typing import Optional

from pydantic import BaseModel, Field

ECONOMY_MODEL = "moonshot-v1-128k"
BALANCED_MODEL = "claude-sonnet-4-5-20250929"
PREMIUM_MODEL = "claude-opus-4-5-20251101"


class ModelInfo(BaseModel):
	"""Static description of an execution model."""
	id: str
	provider: str = Field(description="anthropic, openai or moonshot")
	display_name: str
	tier: int = Field(ge=1, le=5, description="1 = cheapest, 5 = best")
	input_cost_per_1m: float = Field(description="USD per 1M input tokens")
	output_cost_per_1m: float = Field(description="USD per 1M output tokens")
	context_window: int
	strengths: list[str] = Field(default_factory=list)


class CostEstimate(BaseModel):
	model: str
	input_tokens: int
	output_tokens: int
	input_cost: float
	output_cost: float
	total_cost: float


class Savings(BaseModel):
	actual_cost: float
	premium_cost: float
	saved_usd: float
	saved_percent: float


MODEL_REGISTRY: dict[str, ModelInfo] = {
	m.id: m
	for m in [
		ModelInfo(
			id="moonshot-v1-128k", provider="moonshot", display_name="Moonshot Kimi v1 128K",
			tier=1, input_cost_per_1m=0.30, output_cost_per_1m=0.30, context_window=128_000,
			strengths=["very cheap", "large context"],
		),
		ModelInfo(
			id="moonshot-v1-32k", provider="moonshot", display_name="Moonshot Kimi v1 32K",
			tier=1, input_cost_per_1m=0.24, output_cost_per_1m=0.24, context_window=32_000,
			strengths=["cheapest", "fast"],
		),
		ModelInfo(
			id="claude-haiku-4-5-20251001", provider="anthropic", display_name="Claude Haiku 4.5",
			tier=2, input_cost_per_1m=0.80, output_cost_per_1m=4.00, context_window=200_000,
			strengths=["fast", "affordable"],
		),
		ModelInfo(
			id="claude-sonnet-4-5-20250929", provider="anthropic", display_name="Claude Sonnet 4.5",
			tier=3, input_cost_per_1m=3.00, output_cost_per_1m=15.00, context_window=200_000,
			strengths=["balanced", "reliable"],
		),
		ModelInfo(
			id="claude-opus-4-5-20251101", provider="anthropic", display_name="Claude Opus 4.5",
			tier=5, input_cost_per_1m=15.00, output_cost_per_1m=75.00, context_window=200_000,
			strengths=["highest quality", "complex problems"],
		),
		ModelInfo(
			id="gpt-4o", provider="openai", display_name="GPT-4o",
			tier=3, input_cost_per_1m=2.50, output_cost_per_1m=10.00, context_window=128_000,
			strengths=["general purpose", "multimodal"],
		),
		ModelInfo(
			id="gpt-4o-mini", provider="openai", display_name="GPT-4o Mini",
			tier=1, input_cost_per_1m=0.15, output_cost_per_1m=0.60, context_window=128_000,
			strengths=["fast", "cheap"],
		),
	]
}

TIER_UPGRADE: dict[str, str] = {
	"moonshot-v1-32k": "moonshot-v1-128k",
	"moonshot-v1-128k": "claude-haiku-4-5-20251001",
	"claude-haiku-4-5-20251001": "claude-sonnet-4-5-20250929",
	"claude-sonnet-4-5-20250929": "claude-opus-4-5-20251101",
	"gpt-4o-mini": "gpt-4o",
	"gpt-4o": "claude-opus-4-5-20251101",
}


def select_optimal_model(complexity: int, mode: str = "auto", manual_model_id: Optional[str] = None) -> str:
	"""Pick a model for the given complexity; a manual choice wins when given."""
	if mode == "manual" and manual_model_id:
		return manual_model_id

	if complexity <= 3:
		return ECONOMY_MODEL
	if complexity <= 7:
		return BALANCED_MODEL
	return PREMIUM_MODEL


def get_upgrade_model(current_model: str) -> Optional[str]:
	"""Next tier up, or None when already at the top."""
	return TIER_UPGRADE.get(current_model)


def get_model_info(model_id: str) -> Optional[ModelInfo]:
	return MODEL_REGISTRY.get(model_id)


def list_models() -> list[ModelInfo]:
	return list(MODEL_REGISTRY.values())


def estimate_cost(input_tokens: int, output_tokens: int, model_id: str) -> CostEstimate:
	"""Estimate USD cost of a call. Unknown models cost nothing."""
	model = MODEL_REGISTRY.get(model_id)
	if model is None:
		return CostEstimate(
			model=model_id, input_tokens=input_tokens, output_tokens=output_tokens,
			input_cost=0.0, output_cost=0.0, total_cost=0.0,
		)

	input_cost = (input_tokens / 1_000_000) * model.input_cost_per_1m
	output_cost = (output_tokens / 1_000_000) * model.output_cost_per_1m
	return CostEstimate(
		model=model_id,
		input_tokens=input_tokens,
		output_tokens=output_tokens,
		input_cost=input_cost,
		output_cost=output_cost,
		total_cost=input_cost + output_cost,
	)


def calculate_savings(input_tokens: int, output_tokens: int, actual_model: str) -> Savings:
	"""Savings compared with always running the premium model."""
	actual = estimate_cost(input_tokens, output_tokens, actual_model)
	premium = estimate_cost(input_tokens, output_tokens, PREMIUM_MODEL)
	saved = premium.total_cost - actual.total_cost
	percent = (saved / premium.total_cost) * 100 if premium.total_cost > 0 else 0.0
	return Savings(
		actual_cost=actual.total_cost,
		premium_cost=premium.total_cost,
		saved_usd=saved,
		saved_percent=percent,
	)
