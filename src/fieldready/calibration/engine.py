"""
Global calibration engine.

An operator says the reference field feels wetter or drier than the model
reports and names the readiness it should have. The engine forces that
field's storage to reproduce the target exactly, scales every other
field's storage by the same ratio (bounded by each field's capacity),
persists the new truth, logs the adjustment, feeds the tuning learner and
starts a cooldown.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Union

from fieldready.calibration.guardrail import check_adjustment
from fieldready.calibration.tuning import TuningLearner
from fieldready.core.config import ReadinessConfig, get_config
from fieldready.core.exceptions import ErrorContext, GuardrailViolation
from fieldready.core.types import (
    EpochMs, Feel, FieldID, GuardrailReason, OperationKey, PermissionGate,
    ReadinessClass, TruthSource,
)
from fieldready.data.contracts import CalibrationAdjustment, GlobalTuning, StorageState
from fieldready.data.sources.base import FieldSource, WeatherSeriesProvider
from fieldready.data.stores import (
    AdjustmentLog, CooldownLock, GlobalTuningStore, ThresholdStore, TruthStateStore
)
from fieldready.physics.drying import clamp
from fieldready.physics.readiness import (
    NO_BIAS, CalibrationBias, readiness_from_storage, storage_for_readiness
)
from fieldready.physics.storage_model import StorageModel
from fieldready.pipeline.fleet import FleetRunner, WriteReport, wall_clock_ms

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentOutcome:
    """Result of ``apply_adjustment``; a rejected request carries a reason and wrote nothing"""
    applied: bool
    reason: Optional[GuardrailReason] = None
    ref_field_id: Optional[FieldID] = None
    op_key: Optional[str] = None
    threshold: Optional[int] = None
    anchor_readiness: Optional[int] = None
    target_readiness: Optional[int] = None
    model_class: Optional[ReadinessClass] = None
    storage_mult: Optional[float] = None
    forced_storage: Optional[float] = None
    written: int = 0
    failed: int = 0
    failed_fields: Dict[FieldID, str] = field(default_factory=dict)
    states: Dict[FieldID, StorageState] = field(default_factory=dict)
    adjustment: Optional[CalibrationAdjustment] = None
    tuning: Optional[GlobalTuning] = None
    next_allowed_ms: Optional[EpochMs] = None

    def raise_for_status(self):
        """Raise GuardrailViolation if the request was rejected"""
        if not self.applied:
            raise GuardrailViolation(
                f"Adjustment rejected: {self.reason.value if self.reason else 'unknown'}",
                reason=self.reason,
                context=ErrorContext(
                    field_id=self.ref_field_id,
                    component="calibration",
                    operation="apply_adjustment",
                ),
            )
        return self


@dataclass
class RebuildOutcome:
    """Result of ``rebuild_truth``"""
    applied: bool
    reason: Optional[GuardrailReason] = None
    window_days: int = 0
    written: int = 0
    failed: int = 0
    failed_fields: Dict[FieldID, str] = field(default_factory=dict)
    states: Dict[FieldID, StorageState] = field(default_factory=dict)

    def raise_for_status(self):
        if not self.applied:
            raise GuardrailViolation(
                f"Rebuild rejected: {self.reason.value if self.reason else 'unknown'}",
                reason=self.reason,
                context=ErrorContext(component="calibration", operation="rebuild_truth"),
            )
        return self


class CalibrationEngine:
    """
    Applies global calibrations and truth rebuilds.

    Guardrail failures never raise; they come back as outcomes with a
    reason code and leave every store untouched.

    Example:
        engine = CalibrationEngine(fields, weather, truth, thresholds,
                                   tuning_store, cooldown, log, gate)
        outcome = engine.apply_adjustment("field-7", 75, "dry", "planting")
        if not outcome.applied:
            print(outcome.reason)
    """

    def __init__(
        self,
        fields: FieldSource,
        weather: WeatherSeriesProvider,
        truth: TruthStateStore,
        thresholds: ThresholdStore,
        tuning_store: GlobalTuningStore,
        cooldown: CooldownLock,
        adjustments: AdjustmentLog,
        permission: PermissionGate,
        config: Optional[ReadinessConfig] = None,
        model: Optional[StorageModel] = None,
        learner: Optional[TuningLearner] = None,
        clock: Callable[[], EpochMs] = wall_clock_ms,
        actor: str = "operator",
    ):
        self.config = config or get_config()
        self.fields = fields
        self.weather = weather
        self.truth = truth
        self.thresholds = thresholds
        self.tuning_store = tuning_store
        self.cooldown = cooldown
        self.adjustments = adjustments
        self.permission = permission
        self.model = model or StorageModel(self.config.storage)
        self.learner = learner or TuningLearner(tuning_store, self.config.tuning)
        self.clock = clock
        self.actor = actor
        self.fleet = FleetRunner(fields, weather, truth, self.model, self.config,
                                 clock=clock, actor=actor)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.CalibrationEngine")

    @property
    def bias(self) -> CalibrationBias:
        return CalibrationBias.from_config(self.config.calibration)

    def _reject(self, reason: GuardrailReason, **details) -> AdjustmentOutcome:
        self.logger.info(f"Adjustment rejected ({reason.value}): {details}")
        return AdjustmentOutcome(applied=False, reason=reason, **details)

    def apply_adjustment(
        self,
        ref_field_id: FieldID,
        target_readiness: int,
        feel: Union[Feel, str],
        op_key: Union[OperationKey, str, None] = None,
    ) -> AdjustmentOutcome:
        """
        Force the reference field to ``target_readiness`` and propagate the
        implied storage multiplier to every field.

        Calls on one engine are serialized, so an overlapping call sees the
        cooldown set by the first and is rejected as locked.

        Args:
            ref_field_id: Field the operator inspected
            target_readiness: Readiness (0-100) the field should read
            feel: "wet" or "dry", the operator's impression
            op_key: Operation whose threshold classifies the field

        Returns:
            AdjustmentOutcome; ``applied`` is False with a reason code when a
            guardrail rejected the request or no truth write succeeded
        """
        with self._lock:
            return self._apply_adjustment(ref_field_id, target_readiness, feel, op_key)

    def _apply_adjustment(
        self,
        ref_field_id: FieldID,
        target_readiness: int,
        feel: Union[Feel, str],
        op_key: Union[OperationKey, str, None],
    ) -> AdjustmentOutcome:
        cal = self.config.calibration
        feel = Feel(feel)
        op_key = OperationKey(op_key).value if op_key else cal.default_op
        target = int(round(clamp(target_readiness, 0, 100)))
        request = dict(ref_field_id=ref_field_id, op_key=op_key, target_readiness=target)

        if not self.permission.can_edit():
            return self._reject(GuardrailReason.NOT_PERMITTED, **request)

        profiles = self.fields.list_fields()
        if not profiles:
            return self._reject(GuardrailReason.NO_FIELDS, **request)

        by_id = {p.id: p for p in profiles}
        ref_profile = by_id.get(ref_field_id)
        if ref_profile is None:
            return self._reject(GuardrailReason.UNKNOWN_FIELD, **request)

        now = self.clock()
        cooldown = self.cooldown.get()
        if cooldown.is_locked(now):
            return self._reject(GuardrailReason.LOCKED, next_allowed_ms=cooldown.next_allowed_ms,
                                **request)

        threshold = self.thresholds.get(op_key)
        tuning = self.tuning_store.get()
        bias = self.bias

        ref_run = self.fleet.run_field(ref_profile, tuning, bias, op_key)
        anchor = ref_run.readiness_r
        check = check_adjustment(feel, anchor, target, threshold, cal.hysteresis_band)
        request.update(threshold=threshold, anchor_readiness=anchor, model_class=check.model_class)
        if not check.allowed:
            return self._reject(check.reason, **request)

        # Solve for the reference storage and the fleet multiplier
        forced = storage_for_readiness(target, ref_run.smax, self.config.storage, ref_run.offset)
        achievable = readiness_from_storage(forced, ref_run.smax, self.config.storage,
                                            ref_run.offset).readiness_r
        if achievable != target:
            return self._reject(GuardrailReason.TARGET_UNREACHABLE, forced_storage=forced,
                                **request)

        current = max(ref_run.storage_final, cal.storage_floor_in)
        storage_mult = clamp(forced / current, cal.storage_mult_min, cal.storage_mult_max)

        adjustment_id = uuid.uuid4().hex
        runs = self.fleet.run_all(tuning, bias, op_key,
                                  profiles=[p for p in profiles if p.id != ref_field_id])
        runs[ref_field_id] = ref_run

        states = {}
        for field_id, run in runs.items():
            if field_id == ref_field_id:
                new_storage = forced
            else:
                new_storage = clamp(run.storage_final * storage_mult, 0.0, run.smax)
            states[field_id] = run.to_state(
                TruthSource.GLOBAL_FORCE_TARGET,
                storage=new_storage,
                updated_at_ms=now,
                updated_by=self.actor,
                previous_storage=run.storage_final,
                storage_mult=storage_mult,
                ref_field_id=ref_field_id,
                op_key=op_key,
                adjustment_id=adjustment_id,
            )

        report: WriteReport = self.fleet.write_states(states, cal.write_batch_size)
        written = dict(
            storage_mult=storage_mult,
            forced_storage=forced,
            written=report.n_written,
            failed=report.n_failed,
            failed_fields=dict(report.failed),
            states=states,
        )

        if report.n_written == 0:
            # Fleet unchanged: no audit entry, no learning, no cooldown
            self.logger.error(f"Calibration {adjustment_id}: every truth write failed")
            return AdjustmentOutcome(applied=False, reason=GuardrailReason.WRITE_FAILED,
                                     **written, **request)

        adjustment = CalibrationAdjustment(
            id=adjustment_id,
            feel=feel,
            anchor_readiness=anchor,
            target_readiness=target,
            delta=target - anchor,
            storage_mult=storage_mult,
            forced_storage=forced,
            ref_field_id=ref_field_id,
            op_key=op_key,
            threshold=threshold,
            ref_storage_before=ref_run.storage_final,
            ref_smax=ref_run.smax,
            fields_written=report.n_written,
            fields_failed=report.n_failed,
            created_at_ms=now,
            created_by=self.actor,
        )
        self.adjustments.add(adjustment)

        new_tuning = self.learner.update(storage_mult, adjustment_id=adjustment_id, now_ms=now)
        lock = self.cooldown.set(now, cal.cooldown_hours)

        self.logger.info(
            f"Calibration {adjustment_id}: {ref_field_id} {anchor} -> {target} ({feel.value}, {op_key}), "
            f"storageMult={storage_mult:.3f}, wrote {report.n_written}/{len(states)} fields"
        )

        return AdjustmentOutcome(
            applied=True,
            adjustment=adjustment,
            tuning=new_tuning,
            next_allowed_ms=lock.next_allowed_ms,
            **written,
            **request,
        )

    def retry_failed_writes(self, outcome: AdjustmentOutcome) -> WriteReport:
        """
        Re-issue the truth writes that failed for an applied ``outcome``.

        Writes are full-document upserts, so repeating one is harmless. An
        outcome rejected with WRITE_FAILED changed nothing; call
        ``apply_adjustment`` again instead.
        """
        if not outcome.applied:
            self.logger.warning(f"Not retrying writes of an unapplied adjustment ({outcome.reason})")
            return WriteReport()
        states = {fid: outcome.states[fid] for fid in outcome.failed_fields if fid in outcome.states}
        if not states:
            return WriteReport()
        with self._lock:
            report = self.fleet.write_states(states, self.config.calibration.write_batch_size)
        for fid in report.written:
            outcome.failed_fields.pop(fid, None)
        outcome.written += report.n_written
        outcome.failed = len(outcome.failed_fields)
        return report

    def rebuild_truth(self, window_days: Optional[int] = None) -> RebuildOutcome:
        """
        Discard truth and recompute every field from the baseline seed.

        Uses the trailing ``window_days`` of history, the learned
        DRY_LOSS_MULT, a neutral RAIN_EFF_MULT and no calibration bias.
        """
        window_days = window_days or self.config.calibration.rebuild_window_days

        if not self.permission.can_edit():
            self.logger.info("Rebuild rejected: not permitted")
            return RebuildOutcome(applied=False, reason=GuardrailReason.NOT_PERMITTED,
                                  window_days=window_days)

        profiles = self.fields.list_fields()
        if not profiles:
            self.logger.info("Rebuild rejected: no fields loaded")
            return RebuildOutcome(applied=False, reason=GuardrailReason.NO_FIELDS,
                                  window_days=window_days)

        learned = self.tuning_store.get()
        tuning = GlobalTuning(dry_loss_mult=learned.dry_loss_mult, rain_eff_mult=1.0)
        now = self.clock()

        series = self.weather.get_batch([p.id for p in profiles])
        states: Dict[FieldID, StorageState] = {}
        for profile in profiles:
            rows = series[profile.id].trailing(window_days)
            run = self.model.run(profile, rows, seed=None, tuning=tuning, bias=NO_BIAS)
            states[profile.id] = run.to_state(
                TruthSource.BASELINE_REBUILD,
                updated_at_ms=now,
                updated_by=self.actor,
            )

        with self._lock:
            report = self.fleet.write_states(states, self.config.calibration.write_batch_size)
        self.logger.info(
            f"Rebuilt truth over {window_days} days: {report.n_written} written, "
            f"{report.n_failed} failed"
        )
        return RebuildOutcome(
            applied=True,
            window_days=window_days,
            written=report.n_written,
            failed=report.n_failed,
            failed_fields=dict(report.failed),
            states=states,
        )

    def cooldown_status(self) -> Dict[str, Union[bool, int, float]]:
        """Whether calibration is locked and for how long"""
        now = self.clock()
        state = self.cooldown.get()
        return {
            "locked": state.is_locked(now),
            "remaining_ms": state.remaining_ms(now),
            "next_allowed_ms": state.next_allowed_ms,
            "cooldown_hours": state.cooldown_hours,
        }
