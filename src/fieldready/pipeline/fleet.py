"""
Fleet-wide simulation and truth writes.

Runs the storage model for every field (seeded from persisted truth) and
writes StorageState documents in small concurrent batches. Each write is a
full-document upsert, so re-issuing a batch after a partial failure is
safe; there is no rollback.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from fieldready.core.config import ReadinessConfig, get_config
from fieldready.core.types import EpochMs, FieldID, TruthSource
from fieldready.data.contracts import FieldProfile, GlobalTuning, StorageState, WeatherSeries
from fieldready.data.sources.base import FieldSource, WeatherSeriesProvider
from fieldready.data.stores import TruthStateStore
from fieldready.physics.readiness import NO_BIAS, CalibrationBias
from fieldready.physics.storage_model import StorageModel, StorageRun

logger = logging.getLogger(__name__)


def wall_clock_ms() -> EpochMs:
    return int(time.time() * 1000)


@dataclass
class WriteReport:
    """Outcome of a batched truth write"""
    written: List[FieldID] = field(default_factory=list)
    failed: Dict[FieldID, str] = field(default_factory=dict)

    @property
    def n_written(self) -> int:
        return len(self.written)

    @property
    def n_failed(self) -> int:
        return len(self.failed)


class FleetRunner:
    """
    Runs and persists every field of the fleet.

    Example:
        runner = FleetRunner(fields, weather, truth)
        runs = runner.run_all(tuning=tuning_store.get())
        report = runner.roll_forward_all(tuning=tuning_store.get())
    """

    def __init__(
        self,
        fields: FieldSource,
        weather: WeatherSeriesProvider,
        truth: TruthStateStore,
        model: Optional[StorageModel] = None,
        config: Optional[ReadinessConfig] = None,
        clock: Callable[[], EpochMs] = wall_clock_ms,
        actor: str = "system",
    ):
        self.config = config or get_config()
        self.fields = fields
        self.weather = weather
        self.truth = truth
        self.model = model or StorageModel(self.config.storage)
        self.clock = clock
        self.actor = actor
        self.logger = logging.getLogger(f"{__name__}.FleetRunner")

    def run_field(
        self,
        profile: FieldProfile,
        tuning: Optional[GlobalTuning] = None,
        bias: CalibrationBias = NO_BIAS,
        op_key: Optional[str] = None,
        series: Optional[WeatherSeries] = None,
        use_truth: bool = True,
    ) -> StorageRun:
        """Run one field over its history, seeded from truth when available"""
        if series is None:
            series = self.weather.get(profile.id)
        seed = self.truth.get(profile.id) if use_truth else None
        return self.model.run(profile, series.history, seed=seed, tuning=tuning,
                              bias=bias, op_key=op_key)

    def run_all(
        self,
        tuning: Optional[GlobalTuning] = None,
        bias: CalibrationBias = NO_BIAS,
        op_key: Optional[str] = None,
        profiles: Optional[Iterable[FieldProfile]] = None,
    ) -> Dict[FieldID, StorageRun]:
        """Run every field; weather is fetched in parallel"""
        profiles = list(profiles) if profiles is not None else self.fields.list_fields()
        series = self.weather.get_batch([p.id for p in profiles])
        return {
            p.id: self.run_field(p, tuning, bias, op_key, series=series.get(p.id))
            for p in profiles
        }

    def write_states(self, states: Dict[FieldID, StorageState],
                     batch_size: Optional[int] = None) -> WriteReport:
        """
        Upsert truth in batches of ``batch_size`` concurrent writes.

        A failed write is logged and counted; it never aborts sibling writes.
        """
        batch_size = batch_size or self.config.calibration.write_batch_size
        field_ids = list(states)
        report = WriteReport()

        for start in range(0, len(field_ids), batch_size):
            batch = field_ids[start:start + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                future_to_field = {
                    executor.submit(self.truth.set, fid, states[fid]): fid
                    for fid in batch
                }
                for future in as_completed(future_to_field):
                    field_id = future_to_field[future]
                    try:
                        future.result()
                        report.written.append(field_id)
                    except Exception as e:
                        self.logger.error(f"Failed to write truth for {field_id}: {e}")
                        report.failed[field_id] = str(e)

        report.written.sort()
        self.logger.info(f"Wrote truth for {report.n_written} fields ({report.n_failed} failed)")
        return report

    def roll_forward_all(self, tuning: Optional[GlobalTuning] = None) -> WriteReport:
        """
        Advance every field's truth over the days since it was saved.

        Fields whose truth is already current are left untouched; fields
        without truth get their first state from the baseline seed.
        """
        now = self.clock()
        runs = self.run_all(tuning=tuning)
        states = {}
        for field_id, run in runs.items():
            if run.seeded_from_truth and not run.trace:
                self.logger.debug(f"Truth for {field_id} already current at {run.as_of_date_iso}")
                continue
            states[field_id] = run.to_state(
                TruthSource.DAILY_ROLL_FORWARD,
                updated_at_ms=now,
                updated_by=self.actor,
                previous_storage=run.seed_storage if run.seeded_from_truth else None,
            )
        if not states:
            self.logger.info("Roll-forward: all fields already current")
            return WriteReport()
        return self.write_states(states)
