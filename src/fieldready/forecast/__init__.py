"""Forward ETA prediction."""

from fieldready.forecast.predictor import ForecastPredictor, ForecastResult, estimate_eta_hours

__all__ = [
    "ForecastPredictor",
    "ForecastResult",
    "estimate_eta_hours",
]
