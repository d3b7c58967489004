"""Physics modules for field readiness."""
from fieldready.physics.drying import (
    SoilFactors,
    DryingParts,
    map_factors,
    drying_power,
    effective_rain,
)
from fieldready.physics.readiness import (
    CalibrationBias,
    ReadinessReading,
    dry_credit,
    readiness_from_storage,
    storage_for_readiness,
)
from fieldready.physics.storage_model import (
    StorageModel,
    StorageRun,
    TraceDay,
)

__all__ = [
    "SoilFactors",
    "DryingParts",
    "map_factors",
    "drying_power",
    "effective_rain",
    # Reversal
    "CalibrationBias",
    "ReadinessReading",
    "dry_credit",
    "readiness_from_storage",
    "storage_for_readiness",
    # Model
    "StorageModel",
    "StorageRun",
    "TraceDay",
]
