from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator

DEFAULT_SYSTEM_NAMESPACE = "metering-system"
DEFAULT_INTERVAL_MINUTES = 60
DEFAULT_OWNER_ANNOTATION = "tenantmeter.io/owner"


def default_quota() -> Dict[str, str]:
    """Hard limits applied to every tenant namespace quota."""
    return {
        "limits.cpu": "16",
        "limits.memory": "64Gi",
        "requests.storage": "100Gi",
        "pods": "100",
    }


@dataclass
class RedisSettings:
    """Connection options for the Redis-backed object store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RedisSettings":
        defaults = cls()
        return cls(**{k: data.get(k, getattr(defaults, k)) for k in cls.__dataclass_fields__})


@dataclass
class MeteringSettings:
    """Configuration shared by the metering reconcilers."""

    system_namespace: str = DEFAULT_SYSTEM_NAMESPACE
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    owner_annotation: str = DEFAULT_OWNER_ANNOTATION
    conflict_retries: int = 5
    retry_delay: float = 0.01
    # ingested usage record keys remembered per metering record
    folded_record_window: int = 512
    # Prometheus scrape port; None disables the HTTP endpoint
    metrics_port: Optional[int] = None
    default_quota: Dict[str, str] = field(default_factory=default_quota)
    redis: RedisSettings = field(default_factory=RedisSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeteringSettings":
        """Create ``MeteringSettings`` from a raw dictionary."""
        defaults = cls()
        values = {k: data.get(k, getattr(defaults, k)) for k in cls.__dataclass_fields__}
        if isinstance(values["redis"], dict):
            values["redis"] = RedisSettings.from_dict(values["redis"])
        return cls(**values)

    @property
    def interval_seconds(self) -> int:
        return self.interval_minutes * 60


class RedisSettingsModel(BaseModel):
    host: str = "localhost"
    port: int = 6379
    db: int = 0


class MeteringSettingsModel(BaseModel):
    """Pydantic model for validating metering settings."""

    system_namespace: str = DEFAULT_SYSTEM_NAMESPACE
    interval_minutes: Any = DEFAULT_INTERVAL_MINUTES
    owner_annotation: str = DEFAULT_OWNER_ANNOTATION
    conflict_retries: int = 5
    retry_delay: float = 0.01
    folded_record_window: int = 512
    metrics_port: Optional[int] = None
    default_quota: Dict[str, str] = default_quota()
    redis: RedisSettingsModel = RedisSettingsModel()

    @field_validator("system_namespace")
    @classmethod
    def _namespace_not_empty(cls, value: str) -> str:
        return value or DEFAULT_SYSTEM_NAMESPACE

    @field_validator("interval_minutes", mode="before")
    @classmethod
    def _interval_fallback(cls, value: Any) -> int:
        # invalid, empty or non-positive values mean "use the default"
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            return DEFAULT_INTERVAL_MINUTES
        return minutes if minutes > 0 else DEFAULT_INTERVAL_MINUTES

    @field_validator("conflict_retries")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)

    def to_settings(self) -> MeteringSettings:
        """Convert to :class:`MeteringSettings`."""
        return MeteringSettings.from_dict(self.model_dump())
