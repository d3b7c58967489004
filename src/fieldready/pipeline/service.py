"""
Field readiness service.

Wires the document-backed stores, weather cache and field source into the
storage model, forecaster and calibration engine behind one object.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pandas as pd

from fieldready.calibration.engine import AdjustmentOutcome, CalibrationEngine, RebuildOutcome
from fieldready.calibration.guardrail import classify_readiness
from fieldready.core.config import ReadinessConfig, get_config
from fieldready.core.types import (
    DocumentStore, EpochMs, Feel, FieldID, OperationKey, PermissionGate, ReadinessClass
)
from fieldready.data.sources.base import FieldSource, WeatherSeriesProvider
from fieldready.data.sources.fields import DocumentFieldSource
from fieldready.data.sources.weather import CachedWeatherProvider
from fieldready.data.stores import (
    AdjustmentLog, CooldownLock, GlobalTuningStore, JsonFileDocumentStore,
    StaticPermissionGate, ThresholdStore, TruthStateStore,
)
from fieldready.forecast.predictor import ForecastPredictor, ForecastResult
from fieldready.physics.storage_model import StorageModel
from fieldready.pipeline.fleet import FleetRunner, WriteReport, wall_clock_ms

logger = logging.getLogger(__name__)


@dataclass
class FieldStatus:
    """Current readiness of one field for one operation"""
    field_id: FieldID
    name: str
    op_key: str
    threshold: int
    readiness_r: int
    wetness_r: int
    model_class: ReadinessClass
    storage_final: float
    smax: float
    as_of_date_iso: Optional[str]
    seeded_from_truth: bool


class ReadinessService:
    """
    One entry point for status, forecasts, calibration, rebuild and roll-forward.

    Example:
        service = ReadinessService.from_directory("./data/readiness")
        for status in service.status("planting"):
            print(status.field_id, status.readiness_r)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ReadinessConfig] = None,
        permission: Optional[PermissionGate] = None,
        weather: Optional[WeatherSeriesProvider] = None,
        fields: Optional[FieldSource] = None,
        clock: Callable[[], EpochMs] = wall_clock_ms,
        actor: str = "operator",
    ):
        self.config = config or get_config()
        stores = self.config.stores
        self.store = store

        self.truth = TruthStateStore(store, stores.collection("truth"))
        self.thresholds = ThresholdStore(store, stores.collection("thresholds"),
                                         default=self.config.forecast.default_threshold)
        self.tuning_store = GlobalTuningStore(store, stores.collection("tuning"), config=self.config.tuning)
        self.cooldown = CooldownLock(store, self.config.calibration.cooldown_hours,
                                     stores.collection("weights"))
        self.adjustments = AdjustmentLog(store, stores.collection("adjustments"))
        self.weather = weather or CachedWeatherProvider(store, stores.collection("weather"))
        self.fields = fields or DocumentFieldSource(store, stores.collection("fields"))
        self.permission = permission or StaticPermissionGate(True)

        self.model = StorageModel(self.config.storage)
        self.fleet = FleetRunner(self.fields, self.weather, self.truth, self.model,
                                 self.config, clock=clock, actor=actor)
        self.engine = CalibrationEngine(
            self.fields, self.weather, self.truth, self.thresholds, self.tuning_store,
            self.cooldown, self.adjustments, self.permission,
            config=self.config, model=self.model, clock=clock, actor=actor,
        )
        self.predictor = ForecastPredictor(self.model, self.config)
        self.logger = logging.getLogger(f"{__name__}.ReadinessService")

    @classmethod
    def from_directory(cls, data_dir: Optional[Union[str, Path]] = None,
                       config: Optional[ReadinessConfig] = None, **kwargs) -> "ReadinessService":
        """Service over a JsonFileDocumentStore rooted at ``data_dir``"""
        config = config or get_config()
        store = JsonFileDocumentStore(data_dir or config.stores.data_dir)
        return cls(store, config=config, **kwargs)

    def _op(self, op_key: Union[OperationKey, str, None]) -> str:
        return OperationKey(op_key).value if op_key else self.config.calibration.default_op

    def status(self, op_key: Union[OperationKey, str, None] = None) -> List[FieldStatus]:
        """Readiness of every field against the operation threshold"""
        op = self._op(op_key)
        threshold = self.thresholds.get(op)
        runs = self.fleet.run_all(self.tuning_store.get(), self.engine.bias, op)
        names = {p.id: p.name for p in self.fields.list_fields()}

        return [
            FieldStatus(
                field_id=fid,
                name=names.get(fid, ""),
                op_key=op,
                threshold=threshold,
                readiness_r=run.readiness_r,
                wetness_r=run.wetness_r,
                model_class=classify_readiness(run.readiness_r, threshold,
                                               self.config.calibration.hysteresis_band),
                storage_final=run.storage_final,
                smax=run.smax,
                as_of_date_iso=run.as_of_date_iso,
                seeded_from_truth=run.seeded_from_truth,
            )
            for fid, run in runs.items()
        ]

    def status_frame(self, op_key: Union[OperationKey, str, None] = None) -> pd.DataFrame:
        rows = [asdict(s) for s in self.status(op_key)]
        frame = pd.DataFrame(rows)
        if not frame.empty:
            frame["model_class"] = frame["model_class"].map(lambda c: c.value)
            frame = frame.set_index("field_id")
        return frame

    def forecast(self, field_id: Optional[FieldID] = None,
                 op_key: Union[OperationKey, str, None] = None,
                 horizon_hours: Optional[int] = None,
                 now: Optional[datetime] = None) -> List[ForecastResult]:
        """ETA to the operation threshold for one field or the whole fleet"""
        op = self._op(op_key)
        threshold = self.thresholds.get(op)
        tuning = self.tuning_store.get()
        bias = self.engine.bias

        profiles = self.fields.list_fields()
        if field_id is not None:
            profiles = [p for p in profiles if p.id == field_id]
            if not profiles:
                self.logger.warning(f"Unknown field {field_id}")

        results = []
        for profile in profiles:
            series = self.weather.get(profile.id)
            run = self.fleet.run_field(profile, tuning, bias, op, series=series)
            results.append(self.predictor.predict(run, series.forecast, threshold, tuning,
                                                  horizon_hours, now))
        return results

    def calibrate(self, ref_field_id: FieldID, target_readiness: int,
                  feel: Union[Feel, str],
                  op_key: Union[OperationKey, str, None] = None) -> AdjustmentOutcome:
        return self.engine.apply_adjustment(ref_field_id, target_readiness, feel, op_key)

    def rebuild(self, window_days: Optional[int] = None) -> RebuildOutcome:
        return self.engine.rebuild_truth(window_days)

    def roll_forward(self) -> WriteReport:
        return self.fleet.roll_forward_all(self.tuning_store.get())

    def cooldown_status(self) -> Dict[str, Union[bool, int, float]]:
        return self.engine.cooldown_status()
