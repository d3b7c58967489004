"""Global calibration, guardrails and self-tuning."""

from .guardrail import GuardrailCheck, check_adjustment, classify_readiness, feel_contradicts
from .tuning import TuningLearner, learn_from_history
from .engine import AdjustmentOutcome, CalibrationEngine, RebuildOutcome

__all__ = [
    "GuardrailCheck",
    "check_adjustment",
    "classify_readiness",
    "feel_contradicts",
    "TuningLearner",
    "learn_from_history",
    "AdjustmentOutcome",
    "CalibrationEngine",
    "RebuildOutcome",
]
