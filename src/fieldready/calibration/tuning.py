"""
Self-tuning of the fleet-wide drying and rain multipliers.

Each applied calibration says how far the model was off: a storage
multiplier below 1 means the fleet had to be forced drier, which is read
as the model under-drying. The multipliers move by the square root of
that intent so a single calibration only corrects part of the gap.

    intent = clamp(1 / storageMult, 0.10, 2.50)
    DRY_LOSS_MULT' = clamp(DRY_LOSS_MULT * intent ** 0.5, 0.30, 3.00)
    RAIN_EFF_MULT' = clamp(RAIN_EFF_MULT * (1 / intent) ** 0.5, 0.30, 3.00)
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from fieldready.core.config import TuningConfig, get_config
from fieldready.core.types import EpochMs
from fieldready.data.contracts import CalibrationAdjustment, GlobalTuning
from fieldready.data.stores import GlobalTuningStore
from fieldready.physics.drying import clamp

logger = logging.getLogger(__name__)


class TuningLearner:
    """Applies calibration feedback to the persisted GlobalTuning document"""

    def __init__(self, store: Optional[GlobalTuningStore] = None,
                 config: Optional[TuningConfig] = None):
        self.store = store
        self.config = config or get_config().tuning
        self.logger = logging.getLogger(f"{__name__}.TuningLearner")

    def intent_factor(self, storage_mult: float) -> float:
        mult = max(float(storage_mult), 1e-9)
        return clamp(1.0 / mult, self.config.intent_min, self.config.intent_max)

    def next_tuning(
        self,
        previous: GlobalTuning,
        storage_mult: float,
        adjustment_id: Optional[str] = None,
        now_ms: Optional[EpochMs] = None,
    ) -> GlobalTuning:
        """Pure update step"""
        cfg = self.config
        intent = self.intent_factor(storage_mult)

        dry = clamp(previous.dry_loss_mult * intent ** cfg.damping_exp, cfg.mult_min, cfg.mult_max)
        rain = clamp(previous.rain_eff_mult * (1.0 / intent) ** cfg.damping_exp,
                     cfg.mult_min, cfg.mult_max)

        return GlobalTuning(
            dry_loss_mult=dry,
            rain_eff_mult=rain,
            last_adjustment_id=adjustment_id,
            last_storage_mult=storage_mult,
            last_intent_factor=intent,
            adjustments_learned=previous.adjustments_learned + 1,
            updated_at_ms=now_ms,
        )

    def update(
        self,
        storage_mult: float,
        adjustment_id: Optional[str] = None,
        now_ms: Optional[EpochMs] = None,
    ) -> GlobalTuning:
        """Read the current tuning, apply one calibration and persist the result"""
        previous = self.store.get() if self.store is not None else GlobalTuning()
        tuning = self.next_tuning(previous, storage_mult, adjustment_id, now_ms)
        if self.store is not None:
            self.store.set(tuning)

        self.logger.info(
            f"Tuning updated: DRY_LOSS_MULT {previous.dry_loss_mult:.3f} -> {tuning.dry_loss_mult:.3f}, "
            f"RAIN_EFF_MULT {previous.rain_eff_mult:.3f} -> {tuning.rain_eff_mult:.3f} "
            f"(storageMult={storage_mult:.3f})"
        )
        return tuning


def learn_from_history(
    adjustments: Iterable[CalibrationAdjustment],
    config: Optional[TuningConfig] = None,
) -> GlobalTuning:
    """Replay an adjustment log, oldest first, starting from neutral tuning"""
    learner = TuningLearner(store=None, config=config)
    tuning = GlobalTuning()
    for adj in sorted(adjustments, key=lambda a: (a.created_at_ms, a.id)):
        tuning = learner.next_tuning(tuning, adj.storage_mult, adj.id, adj.created_at_ms)
    return tuning
