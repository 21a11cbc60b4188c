"""Visualizer package - Rich terminal views for routing tables and phase usage."""

from .models import render_model_registry
from .phases import render_phase_metrics, render_phase_profiles
from .sub_agents import render_cost_preview, render_sub_agent_waves

__all__ = [
	"render_cost_preview",
	"render_model_registry",
	"render_phase_metrics",
	"render_phase_profiles",
	"render_sub_agent_waves",
]
