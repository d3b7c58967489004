"""
Readiness reversal: physical storage -> 0..100 readiness score, and back.

A signed dry credit (inches) lets a field's capacity bias *felt* dryness:
capacities below the midpoint earn credit (read drier), capacities above it
pay it (read wetter). Physical storage is never altered.

    credit = clamp((MID - Smax) / SPAN, -1, 1) * (REV_POINTS_MAX / 100) * Smax
    sfr    = clamp(storage - credit, 0, Smax)
    wetPct = sfr / Smax * 100
    R      = round(clamp(100 - wetPct + offset, 0, 100))

where ``offset = readinessShift - wetBias``. ``storage_for_readiness`` is
the exact algebraic inverse for any target reachable inside [0, Smax].
"""
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from fieldready.core.config import StorageModelConfig, CalibrationConfig
from fieldready.physics.drying import clamp


def round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


@dataclass(frozen=True)
class CalibrationBias:
    """Additive corrections applied after the physical simulation"""
    wet_bias: float = 0.0  # wetness points, + = wetter
    readiness_shift: float = 0.0  # readiness points, + = drier
    op_wet_bias: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: CalibrationConfig) -> "CalibrationBias":
        return cls(
            wet_bias=config.wet_bias,
            readiness_shift=config.readiness_shift,
            op_wet_bias=dict(config.op_wet_bias),
        )

    def wet_bias_for(self, op_key: Optional[str]) -> float:
        """Per-operation override wins over the global wet bias"""
        if op_key and op_key in self.op_wet_bias:
            value = self.op_wet_bias[op_key]
            if value is not None and np.isfinite(value):
                return float(value)
        return float(self.wet_bias) if np.isfinite(self.wet_bias) else 0.0

    def offset(self, op_key: Optional[str], guard: float) -> float:
        """Net readiness-point offset, each term guard-clamped"""
        wet = clamp(self.wet_bias_for(op_key), -guard, guard)
        shift = self.readiness_shift if np.isfinite(self.readiness_shift) else 0.0
        return clamp(shift, -guard, guard) - wet


NO_BIAS = CalibrationBias()


def dry_credit(smax: float, config: StorageModelConfig) -> float:
    """Signed inches subtracted from storage before scoring"""
    direction = clamp((config.reversal_midpoint_in - smax) / config.reversal_span_in, -1.0, 1.0)
    return direction * (config.rev_points_max / 100.0) * smax


@dataclass(frozen=True)
class ReadinessReading:
    """Score plus the intermediate quantities behind it"""
    readiness_r: int
    wetness_r: int
    wet_pct: float
    storage_for_readiness: float
    credit: float


def readiness_from_storage(
    storage: float,
    smax: float,
    config: StorageModelConfig,
    offset: float = 0.0,
) -> ReadinessReading:
    """Score a storage value against its capacity"""
    smax = max(float(smax), 1e-6)
    storage = clamp(float(np.nan_to_num(storage, nan=0.0)), 0.0, smax)

    credit = dry_credit(smax, config)
    sfr = clamp(storage - credit, 0.0, smax)
    wet_pct = sfr / smax * 100.0
    readiness_r = round_half_up(clamp(100.0 - wet_pct + offset, 0.0, 100.0))

    return ReadinessReading(
        readiness_r=readiness_r,
        wetness_r=100 - readiness_r,
        wet_pct=wet_pct,
        storage_for_readiness=sfr,
        credit=credit,
    )


def storage_for_readiness(
    target_readiness: float,
    smax: float,
    config: StorageModelConfig,
    offset: float = 0.0,
) -> float:
    """Storage (inches) that scores exactly ``target_readiness``"""
    smax = max(float(smax), 1e-6)
    target = clamp(float(target_readiness), 0.0, 100.0)

    wet_pct = clamp(100.0 - target + offset, 0.0, 100.0)
    sfr = wet_pct / 100.0 * smax
    return clamp(sfr + dry_credit(smax, config), 0.0, smax)
