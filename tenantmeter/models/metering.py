"""Objects owned by the metering and billing controllers."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field

from .meta import StoredObject

METERING_PREFIX = "metering-"
QUOTA_PREFIX = "quota-"
LEDGER_PREFIX = "deduction"
PRICE_PREFIX = "price-"
POD_RESOURCE_NAME = "pod"

HOURLY_WINDOW = 24

STORAGE_RESOURCE = "storage"
STORAGE_QUOTA_KEY = "requests.storage"

DEFAULT_POD_OBJECT_KINDS = ["v1/Pod"]

# label on a ledger deduction naming the metering record that emitted it
METERING_SOURCE_LABEL = "tenantmeter.io/metering"


def metering_record_name(namespace: str) -> str:
    return METERING_PREFIX + namespace


def quota_name(namespace: str) -> str:
    return QUOTA_PREFIX + namespace


def ledger_deduction_name(owner: str, sequence_id: int) -> str:
    """Deterministic ledger key; one name per (owner, billing period)."""
    return f"{LEDGER_PREFIX}-{owner}-{sequence_id}"


def usage_record_name(tenant_namespace: str, resource_name: str, sequence_id: int) -> str:
    return f"{tenant_namespace}-{resource_name}-{sequence_id}"


def price_entry_name(resource_name: str) -> str:
    return PRICE_PREFIX + resource_name


class ResourceUsage(BaseModel):
    """Used quantity and cost (integer minor units) of one resource kind."""

    used: str = "0"
    cost: int = 0
    timestamp: int = 0
    namespace: str = ""


class BillingPeriod(str, Enum):
    HOUR = "hour"
    DAY = "day"


class BillingEntry(BaseModel):
    timestamp: int
    amount: int
    settled: bool = False
    period: BillingPeriod = BillingPeriod.HOUR


class ResourceCharge(BaseModel):
    resource_kind: str
    used: str
    cost: int


class PendingDeduction(BaseModel):
    """A closed billing period whose ledger deduction is not yet confirmed."""

    sequence_id: int
    amount: int
    timestamp: int
    resource_breakdown: List[ResourceCharge] = Field(default_factory=list)


class MeteringSpec(BaseModel):
    owner: str = ""
    namespace: str = ""
    interval_minutes: int = 60
    accumulator: Dict[str, ResourceUsage] = Field(default_factory=dict)
    # keys of usage records already folded into the accumulator
    folded_records: List[str] = Field(default_factory=list)


class MeteringStatus(BaseModel):
    billing_history_hourly: List[BillingEntry] = Field(default_factory=list)
    billing_history_daily: List[BillingEntry] = Field(default_factory=list)
    total_amount: int = 0
    last_billing_timestamp: int = 0
    sequence_id: int = 0
    pending_deduction: Optional[PendingDeduction] = None


class MeteringRecord(StoredObject):
    """Durable per-tenant accumulator and billing history."""

    kind: ClassVar[str] = "MeteringRecord"

    spec: MeteringSpec = Field(default_factory=MeteringSpec)
    status: MeteringStatus = Field(default_factory=MeteringStatus)


class UsageRecordPhase(str, Enum):
    PENDING = "Pending"
    COMPLETE = "Complete"


class ResourceUsageSpec(BaseModel):
    target_namespace: str = ""
    resources: Dict[str, ResourceUsage] = Field(default_factory=dict)


class ResourceUsageStatus(BaseModel):
    phase: UsageRecordPhase = UsageRecordPhase.PENDING


class ResourceUsageRecord(StoredObject):
    """Sampled consumption handed from the sampler to ingestion."""

    kind: ClassVar[str] = "ResourceUsageRecord"

    spec: ResourceUsageSpec = Field(default_factory=ResourceUsageSpec)
    status: ResourceUsageStatus = Field(default_factory=ResourceUsageStatus)

    @property
    def is_complete(self) -> bool:
        return self.status.phase == UsageRecordPhase.COMPLETE


class LedgerDeductionSpec(BaseModel):
    owner: str
    amount: int
    timestamp: int
    sequence_id: int
    resource_breakdown: List[ResourceCharge] = Field(default_factory=list)


class LedgerDeduction(StoredObject):
    """Immutable request to subtract ``amount`` from a tenant balance."""

    kind: ClassVar[str] = "LedgerDeduction"

    spec: LedgerDeductionSpec


class ResourcePrice(BaseModel):
    """``price`` minor units per ``unit`` of a resource."""

    unit: str = "1"
    price: int = 0


class PriceTableSpec(BaseModel):
    resource_name: str
    resources: Dict[str, ResourcePrice] = Field(default_factory=dict)
    object_kinds: List[str] = Field(default_factory=list)


class PriceTableEntry(StoredObject):
    kind: ClassVar[str] = "PriceTableEntry"

    spec: PriceTableSpec


class UsageSamplerSpec(BaseModel):
    resource_name: str = POD_RESOURCE_NAME
    interval_minutes: int = 1
    resources: Dict[str, ResourcePrice] = Field(default_factory=dict)


class UsageSamplerStatus(BaseModel):
    last_sample_timestamp: int = 0
    sequence_id: int = 0


class UsageSampler(StoredObject):
    """Declares which resources to sample, their prices and the cadence."""

    kind: ClassVar[str] = "UsageSampler"

    spec: UsageSamplerSpec = Field(default_factory=UsageSamplerSpec)
    status: UsageSamplerStatus = Field(default_factory=UsageSamplerStatus)
