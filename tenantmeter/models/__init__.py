from .cluster import Container, Namespace, Pod, PodPhase, ResourceQuota
from .meta import ObjectMeta, StoredObject
from .metering import (
    BillingEntry,
    BillingPeriod,
    LedgerDeduction,
    MeteringRecord,
    PendingDeduction,
    PriceTableEntry,
    ResourceCharge,
    ResourcePrice,
    ResourceUsage,
    ResourceUsageRecord,
    UsageRecordPhase,
    UsageSampler,
)


__all__ = [
    "BillingEntry",
    "BillingPeriod",
    "Container",
    "LedgerDeduction",
    "MeteringRecord",
    "Namespace",
    "ObjectMeta",
    "PendingDeduction",
    "Pod",
    "PodPhase",
    "PriceTableEntry",
    "ResourceCharge",
    "ResourcePrice",
    "ResourceQuota",
    "ResourceUsage",
    "ResourceUsageRecord",
    "StoredObject",
    "UsageRecordPhase",
    "UsageSampler",
]
