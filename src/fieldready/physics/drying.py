"""
Soil factor mapping, daily drying power and effective rain.

All functions are pure and clamp every intermediate value, so a missing or
malformed weather value degrades to a neutral contribution instead of
propagating NaN.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from fieldready.core.config import StorageModelConfig
from fieldready.data.contracts import WeatherRow

logger = logging.getLogger(__name__)


def clamp(value: float, lo: float, hi: float) -> float:
    return float(np.clip(value, lo, hi))


def normalized_soil_moisture(sm010: Optional[float]) -> float:
    """Shallow (0-10cm) volumetric moisture mapped onto 0..1"""
    if sm010 is None or not np.isfinite(sm010):
        return 0.0
    return clamp((sm010 - 0.10) / 0.25, 0.0, 1.0)


@dataclass(frozen=True)
class SoilFactors:
    """Per-field multipliers derived from the soil sliders"""
    soil_hold: float
    drain_poor: float
    sm_n: float
    infil_mult: float
    dry_mult: float
    smax_base: float
    smax: float

    def as_dict(self) -> dict:
        return {
            "Smax": self.smax,
            "SmaxBase": self.smax_base,
            "infilMult": self.infil_mult,
            "dryMult": self.dry_mult,
            "soilHold": self.soil_hold,
            "drainPoor": self.drain_poor,
        }


def map_factors(
    soil_wetness: float,
    drainage_index: float,
    sm010: Optional[float],
    config: StorageModelConfig,
) -> SoilFactors:
    """
    Map the 0-100 soil sliders onto capacity and flux multipliers.

    Capacity is a base plus soil/drainage terms, nudged up by the latest
    shallow soil moisture and bounded to [smax_min_in, smax_max_in].
    """
    soil_hold = clamp(np.nan_to_num(soil_wetness, nan=0.0) / 100.0, 0.0, 1.0)
    drain_poor = clamp(np.nan_to_num(drainage_index, nan=0.0) / 100.0, 0.0, 1.0)
    sm_n = normalized_soil_moisture(sm010)

    infil_mult = 0.60 + 0.30 * soil_hold + 0.35 * drain_poor
    dry_mult = 1.20 - 0.35 * soil_hold - 0.40 * drain_poor

    smax_base = (config.smax_base_in
                 + config.smax_soil_w * soil_hold
                 + config.smax_drain_w * drain_poor)
    smax = clamp(smax_base * (1 + config.storage_cap_sm010_w * sm_n),
                 config.smax_min_in, config.smax_max_in)

    return SoilFactors(
        soil_hold=soil_hold,
        drain_poor=drain_poor,
        sm_n=sm_n,
        infil_mult=infil_mult,
        dry_mult=dry_mult,
        smax_base=smax_base,
        smax=smax,
    )


@dataclass(frozen=True)
class DryingParts:
    """Normalized drivers behind one day's drying power"""
    temp_n: float
    wind_n: float
    rh_n: float
    solar_n: float
    vpd_n: float
    cloud_n: float
    et0_n: float
    sm_n_day: float
    raw: float
    dry_pwr: float


def drying_power(row: WeatherRow, config: StorageModelConfig) -> DryingParts:
    """
    Weighted temperature/solar/wind/humidity drying power in 0..1,
    nudged by vapour pressure deficit (up) and cloud cover (down).
    """
    temp_n = clamp((row.temp_f - 20) / 45, 0.0, 1.0)
    wind_n = clamp((row.wind_mph - 2) / 20, 0.0, 1.0)
    solar_n = clamp((row.solar_wm2 - 60) / 300, 0.0, 1.0)
    rh_n = clamp((row.rh - 35) / 65, 0.0, 1.0)

    raw = 0.35 * temp_n + 0.30 * solar_n + 0.25 * wind_n - 0.25 * rh_n
    dry_pwr = clamp(raw, 0.0, 1.0)

    vpd_n = 0.0 if row.vpd_kpa is None else clamp(row.vpd_kpa / 2.6, 0.0, 1.0)
    cloud_n = 0.0 if row.cloud_pct is None else clamp(row.cloud_pct / 100, 0.0, 1.0)
    dry_pwr = clamp(dry_pwr + config.drypwr_vpd_w * vpd_n - config.drypwr_cloud_w * cloud_n, 0.0, 1.0)

    et0_n = 0.0 if row.et0_in is None else clamp(row.et0_in / 0.30, 0.0, 1.0)

    return DryingParts(
        temp_n=temp_n,
        wind_n=wind_n,
        rh_n=rh_n,
        solar_n=solar_n,
        vpd_n=vpd_n,
        cloud_n=cloud_n,
        et0_n=et0_n,
        sm_n_day=normalized_soil_moisture(row.sm010),
        raw=raw,
        dry_pwr=dry_pwr,
    )


def effective_rain(
    rain_in: float,
    storage_before: float,
    smax: float,
    drain_poor: float,
    config: StorageModelConfig,
) -> float:
    """
    Rain that actually reaches storage.

    With ``saturation_aware_rain`` off this is the raw rain. With it on,
    runoff grows as the profile nears saturation (worse with poor drainage)
    and a share bypasses a very dry surface (more with good drainage); a
    minimum fraction of rain always counts.
    """
    rain = max(0.0, float(np.nan_to_num(rain_in, nan=0.0)))
    if not config.saturation_aware_rain:
        return rain
    if rain <= 0 or smax <= 0 or not np.isfinite(storage_before):
        return 0.0

    sat = clamp(storage_before / smax, 0.0, 1.0)
    drain_poor = clamp(drain_poor, 0.0, 1.0)

    sr = clamp((sat - config.sat_runoff_start) / max(1e-6, 1 - config.sat_runoff_start), 0.0, 1.0)
    runoff_frac = (sr ** config.runoff_exp) * (1 + config.runoff_drainpoor_w * drain_poor)
    runoff_frac = clamp(runoff_frac, 0.0, config.sat_runoff_cap)
    rain_after_runoff = rain * (1 - runoff_frac)

    sat_b = max(config.sat_drybypass_floor, sat)
    db = clamp((config.dry_bypass_end - sat_b) / max(1e-6, config.dry_bypass_end), 0.0, 1.0)
    bypass_frac = (config.dry_bypass_base * (db ** config.dry_exp)
                   * (1 + config.bypass_gooddrain_w * (1 - drain_poor)))
    bypass_frac = clamp(bypass_frac, 0.0, 0.90)

    return max(config.rain_eff_min * rain, rain_after_runoff * (1 - bypass_frac))
