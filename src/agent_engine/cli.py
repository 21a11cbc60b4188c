"""CLI for agent-engine: config, doctor, and routing-table views."""

import argparse
import platform
import sys
from dataclasses import fields
from typing import Optional

from importlib.metadata import version as pkg_version

from .config import load_config
from .engine.sub_agents import BudgetMode
from .logging_config import setup_logging

CORE_DEPS = ["pydantic", "platformdirs", "rich"]


def cmd_config(args: argparse.Namespace) -> None:
	"""Print the resolved configuration (defaults < config.toml < env)."""
	config = load_config()
	print("agent-engine config")
	print(f"{'=' * 40}")
	toml_path = config.config_dir / "config.toml"
	print(f"  config.toml: {toml_path} ({'found' if toml_path.exists() else 'not found'})")
	print()
	for f in fields(config):
		print(f"  {f.name:28s} {getattr(config, f.name)}")


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("agent-engine doctor")
	print(f"{'=' * 40}")

	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			dep_ver = pkg_version(dep)
			print(f"    {dep:22s} {dep_ver}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Config:")
	try:
		config = load_config()
		print(f"    config dir:          {config.config_dir}")
		print(f"    data dir:            {config.data_dir}")
		if config.breakdown_threshold > config.confidence_threshold:
			issues.append("breakdown_threshold is above confidence_threshold")
		try:
			BudgetMode(config.budget_mode)
		except ValueError:
			issues.append(f"Unknown budget_mode '{config.budget_mode}'")
	except Exception as e:
		print(f"    FAILED: {e}")
		issues.append(f"Config could not be loaded: {e}")
	print()

	if issues:
		print(f"  Issues ({len(issues)}):")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	print("  All checks passed.")


def cmd_models(args: argparse.Namespace) -> None:
	"""Show the model registry."""
	from .visualizer.models import render_model_registry

	render_model_registry(provider=args.provider)


def cmd_profiles(args: argparse.Namespace) -> None:
	"""Show phase context profiles and token limits."""
	from .visualizer.phases import render_phase_profiles

	render_phase_profiles()


def cmd_preview(args: argparse.Namespace) -> None:
	"""Show the sub-agent cost preview for a complexity score."""
	from .visualizer.sub_agents import render_cost_preview

	render_cost_preview(args.complexity, BudgetMode(args.budget))


def cmd_graph(args: argparse.Namespace) -> None:
	"""Show the sub-agent waves for a complexity score."""
	from .visualizer.sub_agents import render_sub_agent_waves

	render_sub_agent_waves(args.complexity, BudgetMode(args.budget))


def _complexity(value: str) -> int:
	score = int(value)
	if not 1 <= score <= 10:
		raise argparse.ArgumentTypeError("complexity must be between 1 and 10")
	return score


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="agent-engine",
		description="Autonomous task-execution engine: routing tables, previews, and health checks",
	)
	subparsers = parser.add_subparsers(dest="command")

	# config
	config_parser = subparsers.add_parser("config", help="Show resolved configuration")
	config_parser.set_defaults(func=cmd_config)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	# models
	models_parser = subparsers.add_parser("models", help="Model registry and upgrade path")
	models_parser.add_argument("--provider", type=str, default=None, help="Filter by provider")
	models_parser.set_defaults(func=cmd_models)

	# profiles
	profiles_parser = subparsers.add_parser("profiles", help="Phase context profiles and token limits")
	profiles_parser.set_defaults(func=cmd_profiles)

	budget_choices = [m.value for m in BudgetMode]

	# preview
	preview_parser = subparsers.add_parser("preview", help="Sub-agent cost preview")
	preview_parser.add_argument("--complexity", type=_complexity, required=True, help="Complexity score 1-10")
	preview_parser.add_argument("--budget", choices=budget_choices, default=BudgetMode.BALANCED.value)
	preview_parser.set_defaults(func=cmd_preview)

	# graph
	graph_parser = subparsers.add_parser("graph", help="Sub-agent execution waves")
	graph_parser.add_argument("--complexity", type=_complexity, required=True, help="Complexity score 1-10")
	graph_parser.add_argument("--budget", choices=budget_choices, default=BudgetMode.BALANCED.value)
	graph_parser.set_defaults(func=cmd_graph)

	return parser


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	setup_logging(level=load_config().log_level)
	args.func(args)


if __name__ == "__main__":
	main()
