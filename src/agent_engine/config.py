"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

import platformdirs

APP_NAME = "agent-engine"
APP_AUTHOR = "agent-engine"

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
MERGE_MODEL = "claude-haiku-4-5-20251001"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	log_dir: Path = field(init=False)

	# Retry loop
	max_attempts: int = 5
	max_plan_revisions: int = 2
	environment_backoff_seconds: float = 30.0

	# Confidence gate
	confidence_threshold: int = 90
	breakdown_threshold: int = 75

	# Models
	default_model: str = DEFAULT_MODEL
	merge_model: str = MERGE_MODEL
	sub_agents_enabled: bool = False
	budget_mode: str = "balanced"

	# Circuit breakers
	ai_failure_threshold: int = 5
	ai_reset_timeout: float = 60.0
	sandbox_failure_threshold: int = 3
	sandbox_reset_timeout: float = 30.0

	strict_transitions: bool = False
	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


PATH_FIELDS = {"config_dir", "data_dir"}


def _coerce(config: Config, attr: str, raw: str):
	"""Convert a raw string to the type of the current attribute value."""
	current = getattr(config, attr)
	if attr in PATH_FIELDS:
		return Path(os.path.expanduser(raw))
	if isinstance(current, bool):
		return raw.strip().lower() in ("1", "true", "yes", "on")
	if isinstance(current, int):
		return int(raw)
	if isinstance(current, float):
		return float(raw)
	return raw


def _apply_env_overrides(config: Config) -> Config:
	"""Apply AGENT_ENGINE_* environment variable overrides."""
	for f in fields(config):
		if not f.init:
			continue
		val = os.getenv(f"AGENT_ENGINE_{f.name.upper()}")
		if val:
			setattr(config, f.name, _coerce(config, f.name, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key):
			if key in PATH_FIELDS:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config_dir itself may be redirected by the environment before the toml lookup
	env_config_dir = os.getenv("AGENT_ENGINE_CONFIG_DIR")
	if env_config_dir:
		config.config_dir = Path(os.path.expanduser(env_config_dir))
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
