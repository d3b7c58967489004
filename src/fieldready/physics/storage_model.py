"""
Daily surface-storage simulation for field readiness.

A single bucket (inches of retained water, capacity Smax) is driven by
rain and a weather-derived drying power. Each field's soil sliders scale
infiltration, drying and capacity; global tuning multipliers scale rain
efficiency and drying loss for the whole fleet. The final storage is
scored 0..100 by the readiness reversal.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from fieldready.core import constants as C
from fieldready.core.config import StorageModelConfig, get_config
from fieldready.core.types import DateISO, FieldID, TruthSource
from fieldready.data.contracts import (
    FieldProfile, GlobalTuning, StorageState, WeatherRow
)
from fieldready.physics.drying import (
    SoilFactors, clamp, drying_power, effective_rain, map_factors
)
from fieldready.physics.readiness import (
    NO_BIAS, CalibrationBias, ReadinessReading, readiness_from_storage
)

logger = logging.getLogger(__name__)

# Weight applied to the shallow soil-moisture add term
_SM010_ADD_SCALE = 0.05


@dataclass(frozen=True)
class TraceDay:
    """Everything that moved storage on one simulated day"""
    date_iso: DateISO
    rain_in: float
    eff_rain_in: float
    dry_pwr: float
    add: float
    loss: float
    before: float
    after: float


@dataclass
class StorageRun:
    """Result of one simulation window for one field"""
    field_id: FieldID
    storage_final: float
    readiness_r: int
    wetness_r: int
    factors: SoilFactors
    rows: List[WeatherRow] = field(default_factory=list)
    trace: List[TraceDay] = field(default_factory=list)
    avg_loss_day: float = C.DEFAULT_AVG_LOSS_IN_DAY
    as_of_date_iso: Optional[DateISO] = None

    # Seed info
    seeded_from_truth: bool = False
    seed_storage: float = 0.0
    rain7_in: float = 0.0

    # Reversal info
    credit: float = 0.0
    offset: float = 0.0

    @property
    def smax(self) -> float:
        return self.factors.smax

    def to_frame(self) -> pd.DataFrame:
        """Per-day trace as a DataFrame indexed by date"""
        columns = ["date_iso", "rain_in", "eff_rain_in", "dry_pwr",
                   "add", "loss", "before", "after"]
        frame = pd.DataFrame([vars(day) for day in self.trace], columns=columns)
        return frame.set_index("date_iso")

    def to_state(self, source: TruthSource, storage: Optional[float] = None,
                 **audit) -> StorageState:
        """Persistable truth for this run (optionally with a replaced storage)"""
        value = self.storage_final if storage is None else storage
        return StorageState(
            storage_final=clamp(value, 0.0, self.smax),
            as_of_date_iso=self.as_of_date_iso,
            smax_at_save=self.smax,
            source=source,
            **audit,
        )


class StorageModel:
    """
    Pure daily storage model.

    ``run`` never mutates its inputs and never raises for missing or
    malformed weather: an empty window yields the baseline seed scored
    against the field's capacity.
    """

    def __init__(self, config: Optional[StorageModelConfig] = None):
        self.config = config or get_config().storage
        self.logger = logging.getLogger(f"{__name__}.StorageModel")

    def factors_for(self, profile: FieldProfile,
                    rows: Sequence[WeatherRow]) -> SoilFactors:
        """Soil factors using the latest row's shallow soil moisture"""
        sm010 = rows[-1].sm010 if rows else None
        return map_factors(profile.soil_wetness, profile.drainage_index, sm010, self.config)

    def baseline_storage(self, rows: Sequence[WeatherRow], smax: float) -> float:
        """Seed used when no truth exists: a fixed share of capacity plus a rain nudge"""
        cfg = self.config
        rain7 = sum(r.rain_in for r in rows[:cfg.baseline_rain_days])
        nudge = clamp(rain7 / cfg.baseline_rain_full_in, 0.0, 1.0)
        seed = cfg.baseline_storage_frac * smax + nudge * cfg.baseline_rain_nudge_frac * smax
        return clamp(seed, 0.0, smax)

    def step(self, before: float, row: WeatherRow, factors: SoilFactors,
             tuning: GlobalTuning) -> TraceDay:
        """Advance storage by one day"""
        cfg = self.config
        parts = drying_power(row, cfg)

        eff_rain = effective_rain(row.rain_in, before, factors.smax, factors.drain_poor, cfg)
        add = (eff_rain * factors.infil_mult * tuning.rain_eff_mult
               + cfg.add_sm010_w * parts.sm_n_day * _SM010_ADD_SCALE)
        loss = (parts.dry_pwr * cfg.loss_scale * factors.dry_mult
                * (1 + cfg.loss_et0_w * parts.et0_n) * tuning.dry_loss_mult)

        after = clamp(before + add - loss, 0.0, factors.smax)

        return TraceDay(
            date_iso=row.date_iso,
            rain_in=row.rain_in,
            eff_rain_in=eff_rain,
            dry_pwr=parts.dry_pwr,
            add=add,
            loss=loss,
            before=before,
            after=after,
        )

    def score(self, storage: float, smax: float, bias: CalibrationBias = NO_BIAS,
              op_key: Optional[str] = None) -> ReadinessReading:
        offset = bias.offset(op_key, self.config.bias_guard_points)
        return readiness_from_storage(storage, smax, self.config, offset)

    def run(
        self,
        profile: FieldProfile,
        rows: Sequence[WeatherRow],
        seed: Optional[StorageState] = None,
        tuning: Optional[GlobalTuning] = None,
        bias: CalibrationBias = NO_BIAS,
        op_key: Optional[str] = None,
    ) -> StorageRun:
        """
        Simulate one field over ``rows``.

        Args:
            profile: Field identity and soil sliders
            rows: Ordered daily weather (history)
            seed: Persisted truth; only rows dated after its asOfDateISO are
                simulated, and its storage is rescaled if capacity changed
            tuning: Global multipliers (neutral when omitted)
            bias: Post-simulation readiness corrections
            op_key: Operation whose wet-bias override applies

        Returns:
            StorageRun with final storage, readiness and a per-day trace
        """
        tuning = tuning or GlobalTuning()
        rows = list(rows)
        factors = self.factors_for(profile, rows)
        smax = factors.smax

        if seed is not None:
            storage = self._rescale_seed(seed, smax)
            if seed.as_of_date_iso:
                window = [r for r in rows if r.date_iso > seed.as_of_date_iso]
            else:
                window = rows
            rain7 = 0.0
        else:
            window = rows
            storage = self.baseline_storage(window, smax)
            rain7 = sum(r.rain_in for r in window[:self.config.baseline_rain_days])
        seed_storage = storage

        trace: List[TraceDay] = []
        for row in window:
            day = self.step(storage, row, factors, tuning)
            trace.append(day)
            storage = day.after
            self.logger.debug(
                f"{profile.id} {day.date_iso}: {day.before:.3f} + {day.add:.3f} "
                f"- {day.loss:.3f} -> {day.after:.3f}"
            )

        if trace:
            as_of = trace[-1].date_iso
        else:
            as_of = seed.as_of_date_iso if seed is not None else None
            if not rows:
                self.logger.warning(f"No weather rows for field {profile.id}; using seed only")

        reading = self.score(storage, smax, bias, op_key)

        return StorageRun(
            field_id=profile.id,
            storage_final=storage,
            readiness_r=reading.readiness_r,
            wetness_r=reading.wetness_r,
            factors=factors,
            rows=window,
            trace=trace,
            avg_loss_day=self.average_loss(trace),
            as_of_date_iso=as_of,
            seeded_from_truth=seed is not None,
            seed_storage=seed_storage,
            rain7_in=rain7,
            credit=reading.credit,
            offset=bias.offset(op_key, self.config.bias_guard_points),
        )

    @staticmethod
    def average_loss(trace: Sequence[TraceDay], days: int = 7) -> float:
        """Mean daily loss over the last ``days`` simulated days"""
        recent = [d.loss for d in trace[-days:]]
        if not recent:
            return C.DEFAULT_AVG_LOSS_IN_DAY
        return float(np.mean(recent))

    def _rescale_seed(self, seed: StorageState, smax: float) -> float:
        storage = seed.storage_final
        if seed.smax_at_save > 0 and abs(seed.smax_at_save - smax) > 1e-9:
            storage = storage * smax / seed.smax_at_save
        return clamp(storage, 0.0, smax)
