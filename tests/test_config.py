from pathlib import Path

import pytest

from tenantmeter.config_models import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_SYSTEM_NAMESPACE,
    MeteringSettings,
    MeteringSettingsModel,
)
from tenantmeter.utils.config import apply_env_overrides, load_config, load_settings


def test_packaged_defaults():
    settings = load_settings(environ={})
    assert settings.system_namespace == DEFAULT_SYSTEM_NAMESPACE
    assert settings.interval_minutes == DEFAULT_INTERVAL_MINUTES
    assert settings.interval_seconds == 3600
    assert settings.default_quota["requests.storage"] == "100Gi"
    assert settings.redis.port == 6379


def test_environment_overrides():
    settings = load_settings(
        environ={
            "METERING_SYSTEM_NAMESPACE": "billing",
            "METERING_INTERVAL": "15",
            "REDIS_HOST": "cache",
            "REDIS_PORT": "6380",
        }
    )
    assert settings.system_namespace == "billing"
    assert settings.interval_minutes == 15
    assert settings.redis.host == "cache"
    assert settings.redis.port == 6380


@pytest.mark.parametrize("raw", ["0", "-5", "abc", None])
def test_invalid_interval_falls_back_to_default(raw):
    model = MeteringSettingsModel(interval_minutes=raw)
    assert model.to_settings().interval_minutes == DEFAULT_INTERVAL_MINUTES


def test_empty_environment_value_is_ignored():
    merged = apply_env_overrides({"metering": {"interval_minutes": 30}}, {"METERING_INTERVAL": ""})
    assert merged["metering"]["interval_minutes"] == 30


def test_custom_config_file(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("metering:\n  system_namespace: ops\n  interval_minutes: 5\n")
    assert load_config(str(path))["metering"]["system_namespace"] == "ops"
    settings = load_settings(str(path), environ={})
    assert settings.system_namespace == "ops"
    assert settings.interval_minutes == 5
    # sections missing from the file keep their defaults
    assert settings.redis.host == "localhost"


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_settings_from_dict_builds_nested_redis():
    settings = MeteringSettings.from_dict({"redis": {"host": "r1"}})
    assert settings.redis.host == "r1"
    assert settings.redis.port == 6379


def test_metrics_port_disabled_by_default_and_overridable():
    assert load_settings(environ={}).metrics_port is None
    settings = load_settings(environ={"METERING_METRICS_PORT": "9108"})
    assert settings.metrics_port == 9108
