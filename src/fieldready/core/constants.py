"""
Physical constants, default values, and system-wide constants.
"""
from typing import Dict, Final, Tuple

# Unit conversion
MM_PER_INCH: Final[float] = 25.4
MS_PER_HOUR: Final[int] = 3_600_000
HOURS_PER_DAY: Final[int] = 24

# Readiness scale
READINESS_MIN: Final[int] = 0
READINESS_MAX: Final[int] = 100
DEFAULT_THRESHOLD: Final[int] = 70

# Calibration policy defaults
DEFAULT_COOLDOWN_HOURS: Final[float] = 72.0
DEFAULT_HYSTERESIS_BAND: Final[float] = 2.0
STORAGE_FLOOR_IN: Final[float] = 0.05
STORAGE_MULT_BOUNDS: Final[Tuple[float, float]] = (0.05, 5.0)
BIAS_GUARD_POINTS: Final[float] = 25.0

# Tuning multiplier defaults
NEUTRAL_MULT: Final[float] = 1.0
TUNING_MULT_BOUNDS: Final[Tuple[float, float]] = (0.30, 3.00)
INTENT_FACTOR_BOUNDS: Final[Tuple[float, float]] = (0.10, 2.50)
TUNING_DAMPING_EXP: Final[float] = 0.5

# Forecast
DEFAULT_HORIZON_HOURS: Final[int] = 168
DEFAULT_EVENT_HOUR_LOCAL: Final[int] = 12
DEFAULT_AVG_LOSS_IN_DAY: Final[float] = 0.08
MIN_AVG_LOSS_IN_DAY: Final[float] = 0.02

# Fallback soil profile when a field document carries no sliders
DEFAULT_SOIL_WETNESS: Final[float] = 60.0
DEFAULT_DRAINAGE_INDEX: Final[float] = 45.0

# Document collections
COLLECTIONS: Final[Dict[str, str]] = {
    "truth": "field_readiness_state",
    "thresholds": "field_readiness_thresholds",
    "adjustments": "field_readiness_adjustments",
    "weights": "field_readiness_model_weights",
    "tuning": "field_readiness_tuning",
    "weather": "field_weather_cache",
    "fields": "fields",
}
DEFAULT_DOC_ID: Final[str] = "default"
