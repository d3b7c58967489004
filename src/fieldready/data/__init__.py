"""
Field Readiness Data Package.

Provides data contracts, document stores and data sources.
"""

from fieldready.data.contracts import (
    WeatherRow,
    WeatherSeries,
    FieldProfile,
    StorageState,
    CalibrationAdjustment,
    GlobalTuning,
    CooldownState,
)
from fieldready.data.stores import (
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    TruthStateStore,
    ThresholdStore,
    GlobalTuningStore,
    CooldownLock,
    AdjustmentLog,
    StaticPermissionGate,
)

__all__ = [
    "WeatherRow",
    "WeatherSeries",
    "FieldProfile",
    "StorageState",
    "CalibrationAdjustment",
    "GlobalTuning",
    "CooldownState",
    # Stores
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
    "TruthStateStore",
    "ThresholdStore",
    "GlobalTuningStore",
    "CooldownLock",
    "AdjustmentLog",
    "StaticPermissionGate",
]
