"""
Tests for the global calibration engine and truth rebuild.
"""
import math
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from fieldready.calibration.engine import CalibrationEngine
from fieldready.core.exceptions import GuardrailViolation, PersistenceError
from fieldready.core.types import GuardrailReason, ReadinessClass, TruthSource
from fieldready.data.contracts import FieldProfile, GlobalTuning, StorageState, WeatherSeries
from fieldready.data.sources.fields import InMemoryFieldSource
from fieldready.data.stores import CooldownLock, StaticPermissionGate, TruthStateStore
from fieldready.physics.storage_model import StorageModel


class FlakyTruthStore(TruthStateStore):
    """Truth store whose writes fail for selected fields"""

    def __init__(self, store, failing):
        super().__init__(store)
        self.failing = set(failing)

    def set(self, field_id, state):
        if field_id in self.failing:
            raise PersistenceError(f"write refused for {field_id}")
        super().set(field_id, state)


class SlowTruthStore(TruthStateStore):
    """Truth store that holds every write open for a moment"""

    def __init__(self, store, delay=0.2):
        super().__init__(store)
        self.delay = delay

    def set(self, field_id, state):
        time.sleep(self.delay)
        super().set(field_id, state)


def _engine(setup, **overrides):
    parts = dict(
        fields=setup["fields"],
        weather=setup["weather"],
        truth=setup["truth"],
        thresholds=setup["thresholds"],
        tuning_store=setup["tuning_store"],
        cooldown=setup["cooldown"],
        adjustments=setup["adjustments"],
        permission=setup["permission"],
        config=setup["config"],
        clock=setup["clock"],
        actor="tester",
    )
    parts.update(overrides)
    return CalibrationEngine(**parts)


class TestApplyAdjustment:

    @pytest.fixture
    def engine(self, fleet_setup):
        return _engine(fleet_setup)

    def test_fleet_scaled_proportionally(self, engine, fleet_setup):
        """Test the fleet is scaled by one multiplier"""
        outcome = engine.apply_adjustment("f2", 75, "dry", "spring_tillage")

        assert outcome.applied
        assert outcome.anchor_readiness == 50
        assert outcome.model_class == ReadinessClass.WET
        assert outcome.forced_storage == pytest.approx(1.0)
        assert outcome.storage_mult == pytest.approx(0.5)
        assert outcome.written == 3
        assert outcome.failed == 0

        truth = fleet_setup["truth"]
        storages = [truth.get(fid).storage_final for fid in ("f1", "f2", "f3")]
        assert storages == pytest.approx([0.5, 1.0, 1.5])

    def test_truth_documents_carry_audit(self, engine, fleet_setup):
        """Test truth documents carry audit fields"""
        outcome = engine.apply_adjustment("f2", 75, "dry")
        state = fleet_setup["truth"].get("f3")

        assert state.source == TruthSource.GLOBAL_FORCE_TARGET
        assert state.previous_storage == pytest.approx(3.0)
        assert state.storage_mult == pytest.approx(0.5)
        assert state.ref_field_id == "f2"
        assert state.op_key == "spring_tillage"
        assert state.adjustment_id == outcome.adjustment.id
        assert state.updated_by == "tester"
        assert state.updated_at_ms == fleet_setup["clock"].now_ms
        assert state.as_of_date_iso == "2025-04-07"
        assert state.smax_at_save == pytest.approx(4.0)

    def test_reference_reruns_to_target(self, engine, fleet_setup):
        """Test the reference reruns to its target"""
        engine.apply_adjustment("f2", 75, "dry")

        ref = fleet_setup["profiles"][1]
        run = engine.fleet.run_field(ref)

        assert run.readiness_r == 75

    def test_adjustment_logged_and_tuning_learned(self, engine, fleet_setup):
        """Test the adjustment is logged and learned from"""
        outcome = engine.apply_adjustment("f2", 75, "dry")

        log = fleet_setup["adjustments"].list()
        assert len(log) == 1
        entry = log[0]
        assert entry.id == outcome.adjustment.id
        assert entry.delta == 25
        assert entry.threshold == 70
        assert entry.ref_storage_before == pytest.approx(2.0)
        assert entry.fields_written == 3
        assert entry.is_global

        tuning = fleet_setup["tuning_store"].get()
        assert tuning.dry_loss_mult == pytest.approx(math.sqrt(2))
        assert tuning.rain_eff_mult == pytest.approx(math.sqrt(0.5))
        assert tuning.last_adjustment_id == entry.id

    def test_second_call_within_cooldown_is_locked(self, engine, fleet_setup):
        """Test a second call within the cooldown is locked"""
        engine.apply_adjustment("f2", 75, "dry")
        truth_before = {fid: fleet_setup["truth"].get(fid) for fid in ("f1", "f2", "f3")}
        tuning_before = fleet_setup["tuning_store"].get()

        fleet_setup["clock"].advance(71)
        outcome = engine.apply_adjustment("f1", 30, "wet")

        assert not outcome.applied
        assert outcome.reason == GuardrailReason.LOCKED
        assert len(fleet_setup["adjustments"].list()) == 1
        assert {fid: fleet_setup["truth"].get(fid) for fid in truth_before} == truth_before
        assert fleet_setup["tuning_store"].get() == tuning_before

    def test_cooldown_expires(self, engine, fleet_setup):
        """Test the cooldown expires"""
        engine.apply_adjustment("f2", 75, "dry")
        fleet_setup["clock"].advance(72)

        # f1 now holds 0.5 in -> readiness 88, classified dry
        outcome = engine.apply_adjustment("f1", 80, "wet")

        assert outcome.applied
        assert len(fleet_setup["adjustments"].list()) == 2

    def test_cooldown_set_after_apply(self, engine, fleet_setup):
        """Test the cooldown is set after apply"""
        outcome = engine.apply_adjustment("f2", 75, "dry")
        status = engine.cooldown_status()

        assert status["locked"]
        assert status["remaining_ms"] == 72 * 3_600_000
        assert outcome.next_allowed_ms == fleet_setup["clock"].now_ms + 72 * 3_600_000

    def test_wrong_direction_is_noop(self, engine, fleet_setup):
        """Test a wrong-direction feel changes nothing"""
        outcome = engine.apply_adjustment("f2", 40, "wet")

        assert not outcome.applied
        assert outcome.reason == GuardrailReason.WRONG_DIRECTION
        assert fleet_setup["adjustments"].list() == []
        assert fleet_setup["truth"].get("f2").storage_final == 2.0
        assert not engine.cooldown_status()["locked"]

    def test_target_against_feel_is_noop(self, engine):
        """Test a target against the feel changes nothing"""
        outcome = engine.apply_adjustment("f2", 45, "dry")
        assert outcome.reason == GuardrailReason.TARGET_NOT_IN_FEEL_DIRECTION

    def test_not_permitted(self, fleet_setup):
        """Test a caller without permission"""
        engine = _engine(fleet_setup, permission=StaticPermissionGate(False))

        outcome = engine.apply_adjustment("f2", 75, "dry")

        assert outcome.reason == GuardrailReason.NOT_PERMITTED
        with pytest.raises(GuardrailViolation) as exc_info:
            outcome.raise_for_status()
        assert exc_info.value.reason == GuardrailReason.NOT_PERMITTED

    def test_no_fields(self, fleet_setup):
        """Test an empty fleet"""
        engine = _engine(fleet_setup, fields=InMemoryFieldSource([]))
        assert engine.apply_adjustment("f2", 75, "dry").reason == GuardrailReason.NO_FIELDS

    def test_unknown_field(self, engine):
        """Test an unknown reference field"""
        assert engine.apply_adjustment("nope", 75, "dry").reason == GuardrailReason.UNKNOWN_FIELD

    def test_raise_for_status_passes_when_applied(self, engine):
        """Test raise_for_status on an applied outcome"""
        outcome = engine.apply_adjustment("f2", 75, "dry")
        assert outcome.raise_for_status() is outcome

    def test_multiplier_is_bounded(self, fleet_setup):
        """Test the multiplier is bounded"""
        # Reference nearly empty: forcing it wet needs a huge multiplier
        fleet_setup["truth"].set("f1", StorageState(
            storage_final=0.0, as_of_date_iso="2025-04-07", smax_at_save=4.0,
            source=TruthSource.BASELINE_REBUILD,
        ))
        engine = _engine(fleet_setup)

        outcome = engine.apply_adjustment("f1", 5, "wet")

        assert outcome.applied
        assert outcome.forced_storage == pytest.approx(3.8)
        assert outcome.storage_mult == pytest.approx(5.0)
        # Other fields scale but never exceed capacity
        assert fleet_setup["truth"].get("f3").storage_final == pytest.approx(4.0)
        assert fleet_setup["truth"].get("f2").storage_final == pytest.approx(4.0)

    def test_failed_writes_are_counted(self, fleet_setup):
        """Test failed writes are counted"""
        truth = FlakyTruthStore(fleet_setup["store"], failing={"f3"})
        engine = _engine(fleet_setup, truth=truth)

        outcome = engine.apply_adjustment("f2", 75, "dry")

        assert outcome.applied
        assert outcome.written == 2
        assert outcome.failed == 1
        assert "f3" in outcome.failed_fields
        assert truth.get("f1").storage_final == pytest.approx(0.5)
        assert truth.get("f3").storage_final == pytest.approx(3.0)
        assert fleet_setup["adjustments"].list()[0].fields_failed == 1

    def test_small_write_batches(self, fleet_setup):
        """Test small write batches"""
        fleet_setup["config"].calibration.write_batch_size = 1
        engine = _engine(fleet_setup)

        assert engine.apply_adjustment("f2", 75, "dry").written == 3

    def test_cooldown_length_follows_config(self, fleet_setup):
        """Test the cooldown window comes from calibration config, not the lock default"""
        fleet_setup["config"].calibration.cooldown_hours = 24
        engine = _engine(fleet_setup, cooldown=CooldownLock(fleet_setup["store"], cooldown_hours=72))

        outcome = engine.apply_adjustment("f2", 75, "dry")

        assert outcome.next_allowed_ms == fleet_setup["clock"].now_ms + 24 * 3_600_000
        assert engine.cooldown_status()["remaining_ms"] == 24 * 3_600_000

    def test_overlapping_calls_apply_once(self, fleet_setup):
        """Test two simultaneous calibrations: one applies, the other is locked"""
        truth = SlowTruthStore(fleet_setup["store"], delay=0.2)
        engine = _engine(fleet_setup, truth=truth)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(engine.apply_adjustment, "f2", 75, "dry") for _ in range(2)]
            outcomes = [f.result() for f in futures]

        assert sorted(o.applied for o in outcomes) == [False, True]
        rejected = next(o for o in outcomes if not o.applied)
        assert rejected.reason == GuardrailReason.LOCKED
        assert len(fleet_setup["adjustments"].list()) == 1
        assert fleet_setup["tuning_store"].get().dry_loss_mult == pytest.approx(math.sqrt(2))
        assert truth.get("f1").storage_final == pytest.approx(0.5)

    def test_all_writes_failing_changes_nothing(self, fleet_setup):
        """Test a calibration with no successful write is not logged, learned or locked"""
        truth = FlakyTruthStore(fleet_setup["store"], failing={"f1", "f2", "f3"})
        engine = _engine(fleet_setup, truth=truth)

        outcome = engine.apply_adjustment("f2", 75, "dry")

        assert not outcome.applied
        assert outcome.reason == GuardrailReason.WRITE_FAILED
        assert outcome.written == 0
        assert outcome.failed == 3
        assert sorted(outcome.states) == ["f1", "f2", "f3"]
        assert outcome.states["f1"].storage_final == pytest.approx(0.5)
        assert not engine.cooldown_status()["locked"]
        assert fleet_setup["tuning_store"].get() == GlobalTuning()
        assert fleet_setup["adjustments"].list() == []
        assert truth.get("f2").storage_final == 2.0

        # Store recovers: the same request can be made again straight away
        truth.failing.clear()
        assert engine.apply_adjustment("f2", 75, "dry").applied

    def test_retry_failed_writes(self, fleet_setup):
        """Test failed truth writes are re-issued from the outcome"""
        truth = FlakyTruthStore(fleet_setup["store"], failing={"f3"})
        engine = _engine(fleet_setup, truth=truth)
        outcome = engine.apply_adjustment("f2", 75, "dry")
        truth.failing.clear()

        report = engine.retry_failed_writes(outcome)

        assert report.written == ["f3"]
        assert outcome.written == 3
        assert outcome.failed == 0
        assert outcome.failed_fields == {}
        assert truth.get("f3").storage_final == pytest.approx(1.5)
        assert engine.retry_failed_writes(outcome).n_written == 0

    def test_retry_ignores_rejected_outcome(self, engine):
        """Test a rejected outcome has nothing to retry"""
        outcome = engine.apply_adjustment("f2", 40, "wet")
        assert engine.retry_failed_writes(outcome).n_written == 0


class TestTargetReachability:
    """A large field (Smax 5.0, dry credit -1.0) holding 3.0 in reads 20"""

    @pytest.fixture
    def engine(self, fleet_setup, make_rows):
        big = FieldProfile(id="big", name="Big", soil_wetness=100, drainage_index=100)
        fleet_setup["weather"].put("big", WeatherSeries(
            history=make_rows(7), forecast=make_rows(7, start="2025-04-08"),
        ))
        fleet_setup["truth"].set("big", StorageState(
            storage_final=3.0, as_of_date_iso="2025-04-07", smax_at_save=5.0,
            source=TruthSource.BASELINE_REBUILD,
        ))
        fields = InMemoryFieldSource(fleet_setup["profiles"] + [big])
        return _engine(fleet_setup, fields=fields)

    def test_unreachable_target_rejected(self, engine, fleet_setup):
        """Test a target above the field's driest reading is rejected untouched"""
        outcome = engine.apply_adjustment("big", 95, "dry")

        assert not outcome.applied
        assert outcome.reason == GuardrailReason.TARGET_UNREACHABLE
        assert outcome.anchor_readiness == 20
        assert outcome.forced_storage == 0.0
        assert outcome.written == 0
        assert fleet_setup["adjustments"].list() == []
        assert fleet_setup["truth"].get("f1").storage_final == 1.0
        assert fleet_setup["truth"].get("big").storage_final == 3.0
        assert not engine.cooldown_status()["locked"]

    def test_reachable_target_with_negative_credit(self, engine, fleet_setup):
        """Test forcing a field with negative dry credit lands on the target"""
        outcome = engine.apply_adjustment("big", 60, "dry")

        assert outcome.applied
        assert outcome.forced_storage == pytest.approx(1.0)
        assert outcome.storage_mult == pytest.approx(1 / 3)
        assert fleet_setup["truth"].get("f3").storage_final == pytest.approx(1.0)
        assert engine.fleet.run_field(engine.fields.get("big")).readiness_r == 60


class TestRebuildTruth:

    @pytest.fixture
    def engine(self, fleet_setup):
        return _engine(fleet_setup)

    def test_rebuild_discards_truth(self, engine, fleet_setup):
        """Test rebuild discards truth"""
        outcome = engine.rebuild_truth(window_days=5)

        assert outcome.applied
        assert outcome.written == 3
        assert outcome.window_days == 5

        model = StorageModel(fleet_setup["config"].storage)
        history = fleet_setup["weather"].get("f1").history[-5:]
        expected = model.run(fleet_setup["profiles"][0], history).storage_final

        for fid in ("f1", "f2", "f3"):
            state = fleet_setup["truth"].get(fid)
            assert state.source == TruthSource.BASELINE_REBUILD
            assert state.storage_final == pytest.approx(expected)
            assert state.as_of_date_iso == "2025-04-07"

    def test_rebuild_uses_learned_drying_and_neutral_rain(self, engine, fleet_setup):
        """Test rebuild uses learned drying and neutral rain"""
        fleet_setup["tuning_store"].set(GlobalTuning(dry_loss_mult=2.0, rain_eff_mult=0.4))

        outcome = engine.rebuild_truth(window_days=3)

        model = StorageModel(fleet_setup["config"].storage)
        history = fleet_setup["weather"].get("f1").history[-3:]
        expected = model.run(fleet_setup["profiles"][0], history,
                             tuning=GlobalTuning(dry_loss_mult=2.0)).storage_final
        assert outcome.states["f1"].storage_final == pytest.approx(expected)

    def test_rebuild_default_window(self, engine, fleet_setup):
        """Test the default rebuild window"""
        assert engine.rebuild_truth().window_days == fleet_setup["config"].calibration.rebuild_window_days

    def test_rebuild_not_permitted(self, fleet_setup):
        """Test rebuild without permission"""
        engine = _engine(fleet_setup, permission=StaticPermissionGate(False))

        outcome = engine.rebuild_truth()

        assert not outcome.applied
        assert outcome.reason == GuardrailReason.NOT_PERMITTED
        assert fleet_setup["truth"].get("f1").storage_final == 1.0
        with pytest.raises(GuardrailViolation):
            outcome.raise_for_status()

    def test_rebuild_no_fields(self, fleet_setup):
        """Test rebuild of an empty fleet"""
        engine = _engine(fleet_setup, fields=InMemoryFieldSource([]))
        assert engine.rebuild_truth().reason == GuardrailReason.NO_FIELDS
