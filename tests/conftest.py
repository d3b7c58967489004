"""
Shared fixtures for field readiness tests.
"""
from datetime import date, timedelta

import pytest

from fieldready.core.config import ReadinessConfig, set_config
from fieldready.core.types import TruthSource
from fieldready.data.contracts import FieldProfile, StorageState, WeatherRow, WeatherSeries
from fieldready.data.sources.fields import InMemoryFieldSource
from fieldready.data.sources.weather import InMemoryWeatherProvider
from fieldready.data.stores import (
    AdjustmentLog, CooldownLock, GlobalTuningStore, InMemoryDocumentStore,
    StaticPermissionGate, ThresholdStore, TruthStateStore,
)

START_MS = 1_700_000_000_000


class FakeClock:
    """Injectable millisecond clock"""

    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, hours: float):
        self.now_ms += int(hours * 3_600_000)


@pytest.fixture
def config():
    """Default configuration, installed as the global instance"""
    cfg = ReadinessConfig()
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_row():
    """Build a weather row; defaults are a warm, breezy, sunny dry day"""
    def _make(date_iso, rain=0.0, temp=75.0, wind=10.0, rh=40.0, solar=400.0, **extra):
        return WeatherRow(date_iso=date_iso, rain_in=rain, temp_f=temp, wind_mph=wind,
                          rh=rh, solar_wm2=solar, **extra)
    return _make


@pytest.fixture
def make_rows(make_row):
    """``days`` consecutive rows starting at ``start``"""
    def _make(days, start="2025-04-01", **kwargs):
        first = date.fromisoformat(start)
        return [make_row((first + timedelta(days=i)).isoformat(), **kwargs) for i in range(days)]
    return _make


@pytest.fixture
def dry_week_profile():
    """soilWetness 60, drainageIndex 45 -> Smax 4.05"""
    return FieldProfile(id="dry-week", name="Dry week", soil_wetness=60, drainage_index=45)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def fleet_setup(config, store, clock, make_rows):
    """
    Three identical fields (sw 50, di 50 -> Smax 4.0, zero dry credit) with
    truth storages 1, 2 and 3 saved as of the last history day, so runs
    simulate nothing and report the seeded storage.
    """
    history = make_rows(7, start="2025-04-01")
    forecast = make_rows(7, start="2025-04-08")
    last_day = history[-1].date_iso

    profiles = [
        FieldProfile(id=f"f{i}", name=f"Field {i}", soil_wetness=50, drainage_index=50)
        for i in (1, 2, 3)
    ]
    truth = TruthStateStore(store)
    for profile, storage in zip(profiles, (1.0, 2.0, 3.0)):
        truth.set(profile.id, StorageState(
            storage_final=storage, as_of_date_iso=last_day, smax_at_save=4.0,
            source=TruthSource.BASELINE_REBUILD,
        ))

    weather = InMemoryWeatherProvider({
        p.id: WeatherSeries(history=history, forecast=forecast) for p in profiles
    })
    thresholds = ThresholdStore(store)
    thresholds.set("spring_tillage", 70)

    return {
        "store": store,
        "profiles": profiles,
        "fields": InMemoryFieldSource(profiles),
        "weather": weather,
        "truth": truth,
        "thresholds": thresholds,
        "tuning_store": GlobalTuningStore(store, config=config.tuning),
        "cooldown": CooldownLock(store, config.calibration.cooldown_hours),
        "adjustments": AdjustmentLog(store),
        "permission": StaticPermissionGate(True),
        "clock": clock,
        "config": config,
    }
