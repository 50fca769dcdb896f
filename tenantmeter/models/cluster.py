"""Cluster objects the metering controllers read but do not own."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Dict, List

from pydantic import BaseModel, Field

from .meta import StoredObject


class Namespace(StoredObject):
    """Cluster scoped namespace; tenants carry the owner annotation."""

    kind: ClassVar[str] = "Namespace"

    def owner(self, annotation: str) -> str | None:
        return self.metadata.annotations.get(annotation)


class ResourceQuotaSpec(BaseModel):
    hard: Dict[str, str] = Field(default_factory=dict)


class ResourceQuotaStatus(BaseModel):
    hard: Dict[str, str] = Field(default_factory=dict)
    used: Dict[str, str] = Field(default_factory=dict)


class ResourceQuota(StoredObject):
    kind: ClassVar[str] = "ResourceQuota"

    spec: ResourceQuotaSpec = Field(default_factory=ResourceQuotaSpec)
    status: ResourceQuotaStatus = Field(default_factory=ResourceQuotaStatus)


class PodPhase(str, Enum):
    """Lifecycle phases reported for a workload instance."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class Container(BaseModel):
    name: str
    limits: Dict[str, str] = Field(default_factory=dict)
    requests: Dict[str, str] = Field(default_factory=dict)

    def resource_quantity(self, resource: str) -> str | None:
        """Return the limit for ``resource``, falling back to the request."""
        if resource in self.limits:
            return self.limits[resource]
        return self.requests.get(resource)


class Pod(StoredObject):
    kind: ClassVar[str] = "Pod"

    phase: PodPhase = PodPhase.PENDING
    containers: List[Container] = Field(default_factory=list)
