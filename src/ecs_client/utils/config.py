"""
Configuration utilities: YAML file, environment variables and CLI overrides.

Later sources win: defaults < YAML file < environment < CLI.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..models import UpgradeConfig

POLICY_KEYS = ("health_policy", "registration_policy", "drain_policy", "convergence_policy")
TRUE_VALUES = {"1", "true", "yes", "on"}
REQUIRED_SETTINGS = (
    ("fleet_name", "ECS_ASG", "--fleet"),
    ("cluster_name", "ECS_CLUSTER", "--cluster"),
)


class ConfigError(Exception):
    """The run configuration is invalid."""


class ConfigNotFoundError(ConfigError):
    """A required configuration value or file is missing."""


def load_yaml_config(config_file: str) -> Dict[str, Any]:
    """
    Read the optional YAML configuration file.

    Raises:
        ConfigNotFoundError: If the file does not exist
        ConfigError: If the YAML is malformed or not a mapping
    """
    path = Path(config_file).expanduser()
    if not path.exists():
        raise ConfigNotFoundError(f"Configuration file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _env_settings(environ: Mapping[str, str]) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    aws: Dict[str, Any] = {}
    if environ.get("ECS_ASG"):
        settings["fleet_name"] = environ["ECS_ASG"]
    if environ.get("ECS_CLUSTER"):
        settings["cluster_name"] = environ["ECS_CLUSTER"]
    if environ.get("ECS_LAUNCHTEMPLATE"):
        settings["use_launch_template"] = environ["ECS_LAUNCHTEMPLATE"].strip().lower() in TRUE_VALUES
    region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION")
    if region:
        aws["region"] = region
    if environ.get("AWS_PROFILE"):
        aws["profile_name"] = environ["AWS_PROFILE"]
    if aws:
        settings["aws"] = aws
    return settings


def _cli_settings(overrides: Mapping[str, Any]) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    for key in ("fleet_name", "cluster_name", "use_launch_template", "dry_run"):
        if overrides.get(key) is not None:
            settings[key] = overrides[key]
    aws = {
        key: overrides[key]
        for key in ("region", "profile_name")
        if overrides.get(key) is not None
    }
    if aws:
        settings["aws"] = aws
    polling = {
        field: overrides[key]
        for key, field in (("poll_interval", "interval"), ("max_attempts", "max_attempts"))
        if overrides.get(key) is not None
    }
    if polling:
        settings["polling"] = polling
    return settings


def _merge(base: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _apply_polling(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Spread a shared ``polling`` section over every gate policy."""
    polling = settings.pop("polling", None)
    if not polling:
        return settings
    for key in POLICY_KEYS:
        settings[key] = _merge(dict(polling), settings.get(key) or {})
    return settings


def load_upgrade_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> UpgradeConfig:
    """
    Build the run configuration.

    Args:
        config_file: Optional YAML file path
        overrides: Values from the command line; ``None`` entries are ignored
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        UpgradeConfig

    Raises:
        ConfigNotFoundError: If fleet or cluster name is missing
        ConfigError: If any value fails validation
    """
    environ = os.environ if environ is None else environ
    file_settings = load_yaml_config(config_file) if config_file else {}

    # CLI polling flags override every gate, including per-gate file settings.
    settings = _apply_polling(_merge(file_settings, _env_settings(environ)))
    cli = _cli_settings(overrides or {})
    cli_polling = cli.pop("polling", None)
    settings = _merge(settings, cli)
    if cli_polling:
        for key in POLICY_KEYS:
            settings[key] = _merge(settings.get(key) or {}, cli_polling)

    missing = [
        f"{name} (set {env_var} or {flag})"
        for name, env_var, flag in REQUIRED_SETTINGS
        if not settings.get(name)
    ]
    if missing:
        raise ConfigNotFoundError("Missing required setting(s): " + ", ".join(missing))

    try:
        return UpgradeConfig(**settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
