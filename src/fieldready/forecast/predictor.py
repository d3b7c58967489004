"""
Hours-to-threshold prediction.

Starting from a field's current run, the storage model is stepped over the
forecast rows (with the run's soil factors and calibration offset) until
the horizon. The first day whose readiness reaches the operation threshold
gives the ETA. Nothing is extrapolated past the forecast.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional, Sequence

from fieldready.core import constants as C
from fieldready.core.config import ForecastConfig, ReadinessConfig, StorageModelConfig, get_config
from fieldready.core.types import FieldID, ForecastStatus
from fieldready.data.contracts import GlobalTuning, WeatherRow
from fieldready.physics.readiness import readiness_from_storage, storage_for_readiness
from fieldready.physics.storage_model import StorageModel, StorageRun, TraceDay

logger = logging.getLogger(__name__)


@dataclass
class ForecastResult:
    """Predicted time until a field reaches an operation threshold"""
    field_id: FieldID
    status: ForecastStatus
    readiness_now: int
    threshold: int
    horizon_hours: int
    hours_until_ready: Optional[int] = None
    readiness_at_horizon: Optional[int] = None
    estimated_hours: Optional[int] = None
    days_simulated: int = 0
    trace: List[TraceDay] = field(default_factory=list)
    readiness_by_day: List[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.status == ForecastStatus.READY_NOW:
            return f"Ready now (>= {self.threshold})"
        if self.status == ForecastStatus.WITHIN_HORIZON:
            return f"Est. ~{self.hours_until_ready} hours"
        if self.status == ForecastStatus.NO_FORECAST:
            if self.estimated_hours is not None:
                return f"No forecast; ~{self.estimated_hours} hours at recent drying rate"
            return "No forecast"
        return f"{self.horizon_hours}h+"


def estimate_eta_hours(
    storage: float,
    smax: float,
    threshold: int,
    avg_loss_day: float,
    config: StorageModelConfig,
    offset: float = 0.0,
) -> int:
    """
    Hours until ``threshold`` assuming no rain and the recent mean daily
    loss (floored so a stalled trace still gives a finite answer).
    """
    target_storage = storage_for_readiness(threshold, smax, config, offset)
    excess = storage - target_storage
    if excess <= 0:
        return 0
    loss = max(float(avg_loss_day), C.MIN_AVG_LOSS_IN_DAY)
    return int(math.ceil(excess / loss * C.HOURS_PER_DAY))


class ForecastPredictor:
    """
    Steps a field forward over forecast days.

    By default the k-th forecast day counts as 24*k hours from now. When
    ``now`` is given, each day is instead treated as happening at the
    configured local event hour (noon) and hours are measured from ``now``.
    """

    def __init__(self, model: Optional[StorageModel] = None,
                 config: Optional[ReadinessConfig] = None):
        self.config = config or get_config()
        self.model = model or StorageModel(self.config.storage)
        self.logger = logging.getLogger(f"{__name__}.ForecastPredictor")

    @property
    def forecast_config(self) -> ForecastConfig:
        return self.config.forecast

    def _event_hours(self, row: WeatherRow, step: int, now: Optional[datetime]) -> int:
        if now is None:
            return step * C.HOURS_PER_DAY
        event = datetime.combine(date.fromisoformat(row.date_iso),
                                 time(self.forecast_config.daily_event_hour_local),
                                 tzinfo=now.tzinfo)
        return int(round((event - now).total_seconds() / 3600.0))

    def predict(
        self,
        run: StorageRun,
        forecast: Sequence[WeatherRow],
        threshold: Optional[int] = None,
        tuning: Optional[GlobalTuning] = None,
        horizon_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ForecastResult:
        """
        Predict hours until ``run``'s field reaches ``threshold``.

        Args:
            run: Current run of the field (from its history)
            forecast: Ordered forecast rows after the run's last day
            threshold: Operation threshold (default from config)
            tuning: Global multipliers used for the forward steps
            horizon_hours: Search horizon (default 168)
            now: Wall-clock start for event-hour timing

        Returns:
            ForecastResult
        """
        cfg = self.forecast_config
        threshold = cfg.default_threshold if threshold is None else int(threshold)
        horizon = cfg.horizon_hours if horizon_hours is None else int(horizon_hours)
        tuning = tuning or GlobalTuning()

        result = ForecastResult(
            field_id=run.field_id,
            status=ForecastStatus.BEYOND_HORIZON,
            readiness_now=run.readiness_r,
            threshold=threshold,
            horizon_hours=horizon,
        )

        if run.readiness_r >= threshold:
            result.status = ForecastStatus.READY_NOW
            result.hours_until_ready = 0
            result.readiness_at_horizon = run.readiness_r
            return result

        if not forecast:
            result.status = ForecastStatus.NO_FORECAST
            result.estimated_hours = estimate_eta_hours(
                run.storage_final, run.smax, threshold, run.avg_loss_day,
                self.config.storage, run.offset,
            )
            self.logger.info(f"No forecast for {run.field_id}; estimate {result.estimated_hours}h")
            return result

        max_days = min(cfg.max_sim_days, len(forecast))
        if now is None:
            max_days = min(max_days, int(math.ceil(horizon / C.HOURS_PER_DAY)))

        storage = run.storage_final
        reached_horizon = False
        for step, row in enumerate(forecast[:max_days], start=1):
            hours = self._event_hours(row, step, now)
            if hours > horizon:
                reached_horizon = True
                break

            day = self.model.step(storage, row, run.factors, tuning)
            storage = day.after
            readiness = readiness_from_storage(storage, run.smax, self.config.storage,
                                               run.offset).readiness_r

            result.trace.append(day)
            result.readiness_by_day.append(readiness)
            result.readiness_at_horizon = readiness

            if result.hours_until_ready is None and readiness >= threshold:
                result.hours_until_ready = max(0, hours)
            if hours >= horizon:
                reached_horizon = True

        result.days_simulated = len(result.trace)
        if not reached_horizon:
            # forecast ended before the horizon
            result.readiness_at_horizon = None

        if result.hours_until_ready is not None:
            result.status = ForecastStatus.WITHIN_HORIZON

        self.logger.debug(
            f"Forecast {run.field_id}: {result.status.value} "
            f"({result.hours_until_ready}h, {result.days_simulated} days)"
        )
        return result
