# Config Utilities
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml

from tenantmeter.config_models import MeteringSettings, MeteringSettingsModel

# Packaged default configuration
PACKAGE_CONFIG_PATH = os.path.abspath(
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "config.yaml")
)

DEFAULT_CONFIG_PATH = PACKAGE_CONFIG_PATH

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "METERING_SYSTEM_NAMESPACE": ("metering", "system_namespace"),
    "METERING_INTERVAL": ("metering", "interval_minutes"),
    "METERING_METRICS_PORT": ("metering", "metrics_port"),
    "REDIS_HOST": ("redis", "host"),
    "REDIS_PORT": ("redis", "port"),
}

logger = logging.getLogger(__name__)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML configuration file"""
    if config_path is None:
        config_path = os.getenv("TENANTMETER_CONFIG", DEFAULT_CONFIG_PATH)

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    logger.info("Loading config from: %s", config_path)
    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}
    return config


def apply_env_overrides(
    config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Return a copy of ``config`` with environment overrides applied.

    Empty environment values are ignored so an unset variable and an empty
    one behave the same.
    """
    environ = os.environ if environ is None else environ
    merged = {section: dict(values or {}) for section, values in config.items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            merged.setdefault(section, {})[key] = value
    return merged


def get_redis_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return the ``redis`` section of ``config``."""
    return config.get("redis", {})


def get_metering_settings(config: Dict[str, Any]) -> MeteringSettings:
    """Return metering configuration as :class:`MeteringSettings`."""
    data = dict(config.get("metering", {}))
    data["redis"] = get_redis_config(config)
    return MeteringSettingsModel(**data).to_settings()


def load_settings(
    config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> MeteringSettings:
    """Load the YAML file, apply environment overrides and validate."""
    config = apply_env_overrides(load_config(config_path), environ)
    settings = get_metering_settings(config)
    logger.info(
        "metering settings: namespace=%s interval=%smin",
        settings.system_namespace,
        settings.interval_minutes,
    )
    return settings

