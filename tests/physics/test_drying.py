"""
Tests for soil factor mapping, drying power and effective rain.
"""
import pytest

from fieldready.core.config import StorageModelConfig
from fieldready.physics.drying import (
    drying_power, effective_rain, map_factors, normalized_soil_moisture
)


class TestFactors:

    @pytest.fixture
    def cfg(self):
        return StorageModelConfig()

    def test_dry_week_profile_factors(self, cfg):
        """Test soil factors for the dry-week profile"""
        f = map_factors(60, 45, None, cfg)

        assert f.soil_hold == pytest.approx(0.60)
        assert f.drain_poor == pytest.approx(0.45)
        assert f.infil_mult == pytest.approx(0.60 + 0.18 + 0.1575)
        assert f.dry_mult == pytest.approx(0.81)
        assert f.smax_base == pytest.approx(4.05)
        assert f.smax == pytest.approx(4.05)

    def test_soil_moisture_raises_capacity(self, cfg):
        """Test shallow soil moisture raises capacity"""
        plain = map_factors(50, 50, None, cfg)
        moist = map_factors(50, 50, 0.35, cfg)

        assert moist.sm_n == pytest.approx(1.0)
        assert moist.smax == pytest.approx(plain.smax * 1.05)

    def test_capacity_clamped(self, cfg):
        """Test capacity bounds"""
        assert map_factors(100, 100, 0.40, cfg).smax == pytest.approx(5.0)
        assert map_factors(0, 0, None, cfg).smax == pytest.approx(3.0)

    def test_sliders_out_of_range_are_clamped(self, cfg):
        """Test out-of-range sliders are clamped"""
        f = map_factors(250, -30, None, cfg)

        assert f.soil_hold == 1.0
        assert f.drain_poor == 0.0

    def test_as_dict_keys(self, cfg):
        """Test factor dict keys"""
        keys = set(map_factors(60, 45, None, cfg).as_dict())
        assert keys == {"Smax", "SmaxBase", "infilMult", "dryMult", "soilHold", "drainPoor"}

    @pytest.mark.parametrize("sm010,expected", [
        (None, 0.0), (0.05, 0.0), (0.10, 0.0), (0.225, 0.5), (0.35, 1.0), (0.60, 1.0),
    ])
    def test_normalized_soil_moisture(self, sm010, expected):
        """Test soil moisture normalization"""
        assert normalized_soil_moisture(sm010) == pytest.approx(expected)


class TestDryingPower:

    @pytest.fixture
    def cfg(self):
        return StorageModelConfig()

    def test_reference_day(self, cfg, make_row):
        """Test drying power on the reference day"""
        parts = drying_power(make_row("2025-04-01"), cfg)

        assert parts.temp_n == 1.0
        assert parts.solar_n == 1.0
        assert parts.wind_n == pytest.approx(0.4)
        assert parts.rh_n == pytest.approx(5 / 65)
        assert parts.dry_pwr == pytest.approx(0.730769, abs=1e-6)

    def test_cold_humid_day_has_no_drying(self, cfg, make_row):
        """Test a cold humid day has no drying"""
        parts = drying_power(make_row("2025-04-01", temp=25, wind=0, rh=100, solar=0), cfg)
        assert parts.dry_pwr == 0.0

    def test_vpd_and_cloud_nudges(self, cfg, make_row):
        """Test VPD and cloud nudges"""
        base = drying_power(make_row("2025-04-01"), cfg).dry_pwr
        with_vpd = drying_power(make_row("2025-04-01", vpd_kpa=2.6), cfg).dry_pwr
        with_cloud = drying_power(make_row("2025-04-01", cloud_pct=100), cfg).dry_pwr

        assert with_vpd == pytest.approx(base + 0.06)
        assert with_cloud == pytest.approx(base - 0.04)

    def test_drying_power_capped_at_one(self, cfg, make_row):
        """Test drying power is capped at one"""
        row = make_row("2025-04-01", temp=110, wind=40, rh=0, solar=1000, vpd_kpa=5.0)
        assert drying_power(row, cfg).dry_pwr == 1.0

    def test_et0_normalization(self, cfg, make_row):
        """Test ET0 normalization"""
        assert drying_power(make_row("2025-04-01", et0_in=0.15), cfg).et0_n == pytest.approx(0.5)
        assert drying_power(make_row("2025-04-01"), cfg).et0_n == 0.0


class TestEffectiveRain:

    def test_raw_rain_when_disabled(self):
        """Test raw rain when saturation awareness is off"""
        cfg = StorageModelConfig()
        assert effective_rain(1.2, 4.0, 4.0, 0.5, cfg) == pytest.approx(1.2)
        assert effective_rain(-0.3, 1.0, 4.0, 0.5, cfg) == 0.0

    def test_runoff_near_saturation(self):
        """Test runoff near saturation"""
        cfg = StorageModelConfig(saturation_aware_rain=True)
        # Saturated profile: runoff capped at 85%, no dry bypass
        assert effective_rain(1.0, 4.0, 4.0, 0.0, cfg) == pytest.approx(0.15)

    def test_mid_profile_keeps_all_rain(self):
        """Test a mid profile keeps all rain"""
        cfg = StorageModelConfig(saturation_aware_rain=True)
        assert effective_rain(1.0, 2.0, 4.0, 0.5, cfg) == pytest.approx(1.0)

    def test_dry_surface_bypass(self):
        """Test bypass on a dry surface"""
        cfg = StorageModelConfig(saturation_aware_rain=True)
        eff = effective_rain(1.0, 0.0, 4.0, 0.0, cfg)

        assert eff < 1.0
        assert eff >= cfg.rain_eff_min
