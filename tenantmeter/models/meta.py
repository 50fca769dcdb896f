"""Object metadata shared by every stored kind."""

from __future__ import annotations

from typing import ClassVar, Dict, Optional

from pydantic import BaseModel, Field


class ObjectMeta(BaseModel):
    """Identity and version information for a stored object.

    ``resource_version`` is the opaque token used for conditional updates;
    it is assigned by the store and must be sent back unchanged.
    """

    name: str
    namespace: str = ""
    resource_version: Optional[str] = None
    annotations: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    deletion_timestamp: Optional[int] = None


class StoredObject(BaseModel):
    """Base class for objects persisted through :mod:`tenantmeter.store`."""

    kind: ClassVar[str] = ""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @classmethod
    def new(cls, namespace: str, name: str, **fields):
        """Return an unsaved object with fresh metadata."""
        return cls(metadata=ObjectMeta(name=name, namespace=namespace), **fields)
