"""Tests for the agent-engine CLI."""

import os
from unittest.mock import patch

import pytest

from agent_engine.cli import build_parser, main


@pytest.fixture
def isolated_env(tmp_path):
	with patch.dict(os.environ, {
		"AGENT_ENGINE_CONFIG_DIR": str(tmp_path / "config"),
		"AGENT_ENGINE_DATA_DIR": str(tmp_path / "data"),
	}):
		yield tmp_path


@pytest.fixture(autouse=True)
def logging_setup():
	with patch("agent_engine.cli.setup_logging") as setup:
		yield setup


def test_no_command_prints_help(capsys):
	"""Running without a subcommand should print help and exit 1."""
	with pytest.raises(SystemExit) as exc_info:
		main([])
	assert exc_info.value.code == 1
	assert "agent-engine" in capsys.readouterr().out


@pytest.mark.parametrize("command", ["config", "doctor", "models", "profiles", "preview", "graph"])
def test_subparsers_registered(command):
	with pytest.raises(SystemExit) as exc_info:
		main([command, "--help"])
	assert exc_info.value.code == 0


def test_complexity_range_enforced():
	with pytest.raises(SystemExit) as exc_info:
		build_parser().parse_args(["preview", "--complexity", "11"])
	assert exc_info.value.code == 2


def test_budget_choices_enforced():
	with pytest.raises(SystemExit):
		build_parser().parse_args(["graph", "--complexity", "8", "--budget", "lavish"])


def test_config_prints_resolved_values(isolated_env, capsys):
	with patch.dict(os.environ, {"AGENT_ENGINE_MAX_ATTEMPTS": "4"}):
		main(["config"])
	out = capsys.readouterr().out
	assert "max_attempts" in out
	assert "4" in out
	assert "not found" in out


def test_doctor_passes(isolated_env, capsys):
	with patch("agent_engine.cli.pkg_version", return_value="1.0"):
		main(["doctor"])
	assert "All checks passed." in capsys.readouterr().out


def test_doctor_reports_issues(isolated_env, capsys):
	with patch.dict(os.environ, {"AGENT_ENGINE_BUDGET_MODE": "lavish"}):
		with patch("agent_engine.cli.pkg_version", return_value="1.0"):
			with pytest.raises(SystemExit) as exc_info:
				main(["doctor"])
	assert exc_info.value.code == 1
	assert "Unknown budget_mode 'lavish'" in capsys.readouterr().out


def test_models_command(isolated_env):
	with patch("agent_engine.visualizer.models.render_model_registry") as render:
		main(["models", "--provider", "openai"])
	render.assert_called_once_with(provider="openai")


def test_preview_command(isolated_env):
	with patch("agent_engine.visualizer.sub_agents.render_cost_preview") as render:
		main(["preview", "--complexity", "8", "--budget", "quality_first"])
	render.assert_called_once()
	assert render.call_args.args[0] == 8
	assert render.call_args.args[1].value == "quality_first"


def test_graph_command(isolated_env):
	with patch("agent_engine.visualizer.sub_agents.render_sub_agent_waves") as render:
		main(["graph", "--complexity", "10"])
	assert render.call_args.args[0] == 10


def test_log_level_from_config(isolated_env, logging_setup):
	"""The configured log level should reach the logging setup."""
	with patch.dict(os.environ, {"AGENT_ENGINE_LOG_LEVEL": "DEBUG"}):
		with patch("agent_engine.visualizer.models.render_model_registry"):
			main(["models"])
	logging_setup.assert_called_once_with(level="DEBUG")


def test_log_level_from_toml(isolated_env, logging_setup):
	config_dir = isolated_env / "config"
	config_dir.mkdir()
	(config_dir / "config.toml").write_text('log_level = "WARNING"\n')
	with patch("agent_engine.visualizer.models.render_model_registry"):
		main(["models"])
	logging_setup.assert_called_once_with(level="WARNING")
