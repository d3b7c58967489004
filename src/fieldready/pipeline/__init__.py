"""
Field Readiness Pipeline Module.

Fleet-wide runs, batched truth writes and the ReadinessService facade.
"""

# Defer service imports to avoid a circular import with calibration
from fieldready.pipeline.fleet import FleetRunner, WriteReport

__all__ = [
    "FleetRunner",
    "WriteReport",
    "ReadinessService",
    "FieldStatus",
]


def __getattr__(name):
    """Lazy import of the service layer."""
    if name in ("ReadinessService", "FieldStatus"):
        from fieldready.pipeline.service import ReadinessService, FieldStatus
        return locals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
