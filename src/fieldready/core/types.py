"""
Type definitions and type aliases for the field readiness system.
Provides strong typing throughout the codebase.
"""
from typing import Protocol, runtime_checkable, Dict, Any, Optional
from enum import Enum
from typing_extensions import TypeAlias


# Type aliases for clarity
FieldID: TypeAlias = str
DateISO: TypeAlias = str  # YYYY-MM-DD
EpochMs: TypeAlias = int
StorageIn: TypeAlias = float  # inches of retained water
ReadinessScore: TypeAlias = int  # 0..100, 100 = most ready
Document: TypeAlias = Dict[str, Any]


class OperationKey(str, Enum):
    """Field operations that carry their own readiness threshold"""
    SPRING_TILLAGE = "spring_tillage"
    PLANTING = "planting"
    SPRAYING = "spraying"
    HARVEST = "harvest"
    FALL_TILLAGE = "fall_tillage"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class Feel(str, Enum):
    """Operator's on-the-ground impression of the reference field"""
    WET = "wet"
    DRY = "dry"


class TruthSource(str, Enum):
    """Origin of a persisted storage value"""
    BASELINE_REBUILD = "baseline-rebuild"
    GLOBAL_FORCE_TARGET = "global-force-target"
    DAILY_ROLL_FORWARD = "daily-roll-forward"


class ReadinessClass(str, Enum):
    """Model classification of a field relative to an operation threshold"""
    WET = "wet"
    OK = "ok"
    DRY = "dry"


class GuardrailReason(str, Enum):
    """Why a calibration or rebuild request was turned into a no-op"""
    NOT_PERMITTED = "not_permitted"
    NO_FIELDS = "no_fields"
    UNKNOWN_FIELD = "unknown_field"
    LOCKED = "locked"
    WRONG_DIRECTION = "wrong_direction"
    TARGET_NOT_IN_FEEL_DIRECTION = "target_not_in_feel_direction"
    TARGET_UNREACHABLE = "target_unreachable"
    WRITE_FAILED = "write_failed"


class ForecastStatus(str, Enum):
    """Outcome of a hours-to-threshold prediction"""
    READY_NOW = "ready_now"
    WITHIN_HORIZON = "within_horizon"
    BEYOND_HORIZON = "beyond_horizon"
    NO_FORECAST = "no_forecast"


# Protocol definitions for dependency injection
@runtime_checkable
class PermissionGate(Protocol):
    """Decides whether the current operator may calibrate or rebuild"""

    def can_edit(self) -> bool:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Per-key get/upsert contract of the backing document database"""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return a copy of the document or None"""
        ...

    def set(self, collection: str, doc_id: str, data: Document, merge: bool = True) -> None:
        """Upsert a document; merge keeps keys absent from ``data``"""
        ...

    def add(self, collection: str, data: Document) -> str:
        """Append a document under a generated id and return the id"""
        ...

    def list(self, collection: str) -> Dict[str, Document]:
        """Return all documents of a collection keyed by id"""
        ...
