"""Field readiness: daily storage model, global calibration and drying forecasts."""

__version__ = "0.1.0"
