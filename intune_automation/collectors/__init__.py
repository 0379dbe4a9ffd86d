from .base import (
    BaseCollector,
    CollectionRun,
    FatalCollectionError,
    PaginatedCollector,
    RateLimitState,
)
from .devices import DeviceCollector, DeviceEvaluation
from .apps import AppCollector
from .audit import AuditCollector

__all__ = [
    "BaseCollector",
    "CollectionRun",
    "FatalCollectionError",
    "PaginatedCollector",
    "RateLimitState",
    "DeviceCollector",
    "DeviceEvaluation",
    "AppCollector",
    "AuditCollector",
]
