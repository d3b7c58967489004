"""
Wrong-direction guardrail for global calibration.

An operator's "feel" only carries information when it contradicts what the
model already says. Readiness within ``band`` points of the threshold is
classified OK so a field sitting on the threshold cannot flip the check
back and forth.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fieldready.core.types import Feel, GuardrailReason, ReadinessClass


def classify_readiness(readiness: float, threshold: float, band: float) -> ReadinessClass:
    """Model classification of a readiness score against an operation threshold"""
    if readiness >= threshold + band:
        return ReadinessClass.DRY
    if readiness <= threshold - band:
        return ReadinessClass.WET
    return ReadinessClass.OK


def feel_contradicts(model_class: ReadinessClass, feel: Feel) -> bool:
    """A "dry" feel is news unless the model already reads dry; likewise for "wet"."""
    if feel == Feel.DRY:
        return model_class != ReadinessClass.DRY
    return model_class != ReadinessClass.WET


@dataclass(frozen=True)
class GuardrailCheck:
    allowed: bool
    model_class: ReadinessClass
    reason: Optional[GuardrailReason] = None


def check_adjustment(
    feel: Feel,
    anchor_readiness: int,
    target_readiness: int,
    threshold: int,
    band: float,
) -> GuardrailCheck:
    """
    Decide whether a requested adjustment may proceed.

    The feel must contradict the reference field's classification, and the
    target must move readiness in the feel's direction (drier = higher).
    """
    feel = Feel(feel)
    model_class = classify_readiness(anchor_readiness, threshold, band)

    if not feel_contradicts(model_class, feel):
        return GuardrailCheck(False, model_class, GuardrailReason.WRONG_DIRECTION)

    if feel == Feel.DRY and target_readiness <= anchor_readiness:
        return GuardrailCheck(False, model_class, GuardrailReason.TARGET_NOT_IN_FEEL_DIRECTION)
    if feel == Feel.WET and target_readiness >= anchor_readiness:
        return GuardrailCheck(False, model_class, GuardrailReason.TARGET_NOT_IN_FEEL_DIRECTION)

    return GuardrailCheck(True, model_class)
