"""
Configuration system with validation and environment awareness.
Based on Pydantic Settings for robust configuration management.
"""
from pathlib import Path
import yaml
from pydantic import Field, ConfigDict, model_validator
from pydantic_settings import BaseSettings
from typing import Dict, Optional, Literal, Union

from fieldready.core import constants as C
from fieldready.core.exceptions import ConfigurationError, ErrorContext


class StorageModelConfig(BaseSettings):
    """Constants of the daily storage simulation and readiness reversal"""

    # Loss scaling and light-influence weights
    loss_scale: float = Field(0.55, gt=0, description="Inches lost per unit drying power per day")
    drypwr_vpd_w: float = Field(0.06, ge=0, le=1)
    drypwr_cloud_w: float = Field(0.04, ge=0, le=1)
    loss_et0_w: float = Field(0.08, ge=0, le=1)
    add_sm010_w: float = Field(0.10, ge=0, le=1)
    storage_cap_sm010_w: float = Field(0.05, ge=0, le=1)

    # Capacity (inches)
    smax_base_in: float = Field(3.0, gt=0)
    smax_soil_w: float = Field(1.0, ge=0)
    smax_drain_w: float = Field(1.0, ge=0)
    smax_min_in: float = Field(3.0, gt=0)
    smax_max_in: float = Field(5.0, gt=0)

    # Readiness reversal policy
    reversal_midpoint_in: float = Field(4.0, gt=0, description="Capacity that earns no dry credit")
    reversal_span_in: float = Field(1.0, gt=0)
    rev_points_max: float = Field(20.0, ge=0, le=100, description="Point budget of the dry credit")
    bias_guard_points: float = Field(C.BIAS_GUARD_POINTS, ge=0, le=100)

    # Baseline seed when no truth exists
    baseline_storage_frac: float = Field(0.30, ge=0, le=1)
    baseline_rain_nudge_frac: float = Field(0.10, ge=0, le=1)
    baseline_rain_days: int = Field(7, gt=0)
    baseline_rain_full_in: float = Field(8.0, gt=0)

    # Saturation-aware effective rain (off keeps rain * infilMult * RAIN_EFF_MULT)
    saturation_aware_rain: bool = Field(False)
    sat_runoff_start: float = Field(0.75, ge=0.40, le=0.95)
    runoff_exp: float = Field(2.2, ge=0.8, le=6.0)
    runoff_drainpoor_w: float = Field(0.35, ge=0.0, le=0.8)
    dry_bypass_end: float = Field(0.35, ge=0.10, le=0.70)
    dry_exp: float = Field(1.6, ge=0.8, le=6.0)
    dry_bypass_base: float = Field(0.45, ge=0.0, le=0.85)
    bypass_gooddrain_w: float = Field(0.15, ge=0.0, le=0.6)
    sat_drybypass_floor: float = Field(0.02, ge=0.0, le=0.20)
    sat_runoff_cap: float = Field(0.85, ge=0.20, le=0.95)
    rain_eff_min: float = Field(0.05, ge=0.0, le=0.20)

    @model_validator(mode="after")
    def validate_capacity_bounds(self):
        if self.smax_min_in > self.smax_max_in:
            raise ValueError("smax_min_in must be <= smax_max_in")
        return self


class CalibrationConfig(BaseSettings):
    """Global calibration policy"""

    cooldown_hours: float = Field(C.DEFAULT_COOLDOWN_HOURS, ge=0)
    hysteresis_band: float = Field(C.DEFAULT_HYSTERESIS_BAND, ge=0, le=50)
    storage_floor_in: float = Field(C.STORAGE_FLOOR_IN, gt=0)
    storage_mult_min: float = Field(C.STORAGE_MULT_BOUNDS[0], gt=0)
    storage_mult_max: float = Field(C.STORAGE_MULT_BOUNDS[1], gt=0)
    write_batch_size: int = Field(8, ge=1, le=64, description="Concurrent truth writes per batch")
    rebuild_window_days: int = Field(30, ge=1)
    default_op: str = Field("spring_tillage")

    # Additive corrections applied after the physical simulation
    wet_bias: float = Field(0.0, description="Wetness points; + = wetter")
    readiness_shift: float = Field(0.0, description="Readiness points; + = drier")
    op_wet_bias: Dict[str, float] = Field(default_factory=dict)


class TuningConfig(BaseSettings):
    """Self-tuning feedback loop"""

    damping_exp: float = Field(C.TUNING_DAMPING_EXP, gt=0, le=1)
    intent_min: float = Field(C.INTENT_FACTOR_BOUNDS[0], gt=0)
    intent_max: float = Field(C.INTENT_FACTOR_BOUNDS[1], gt=0)
    mult_min: float = Field(C.TUNING_MULT_BOUNDS[0], gt=0)
    mult_max: float = Field(C.TUNING_MULT_BOUNDS[1], gt=0)


class ForecastConfig(BaseSettings):
    """Forward ETA prediction"""

    horizon_hours: int = Field(C.DEFAULT_HORIZON_HOURS, gt=0)
    max_sim_days: int = Field(16, ge=1, le=16)
    daily_event_hour_local: int = Field(C.DEFAULT_EVENT_HOUR_LOCAL, ge=0, le=23)
    default_threshold: int = Field(C.DEFAULT_THRESHOLD, ge=0, le=100)


class StoreConfig(BaseSettings):
    """Document store layout"""

    data_dir: Path = Field(Path("./data/readiness"))
    collections: Dict[str, str] = Field(default_factory=lambda: dict(C.COLLECTIONS))

    def collection(self, key: str) -> str:
        return self.collections.get(key, C.COLLECTIONS[key])


class MonitoringConfig(BaseSettings):
    """Configuration for logging"""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class ReadinessConfig(BaseSettings):
    """Main configuration for the field readiness system"""

    project_name: str = "fieldready"
    environment: Literal["development", "staging", "production"] = "development"

    storage: StorageModelConfig = Field(default_factory=StorageModelConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    tuning: TuningConfig = Field(default_factory=TuningConfig)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    stores: StoreConfig = Field(default_factory=StoreConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = ConfigDict(
        env_prefix="FIELDREADY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "ReadinessConfig":
        """Load configuration from YAML file"""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path, encoding="utf-8") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Unreadable config file: {e}",
                    ErrorContext(component="config", operation="from_yaml"),
                )

        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                "Config file must contain a mapping",
                ErrorContext(component="config", operation="from_yaml"),
            )
        return cls(**yaml_config)

    def to_yaml(self, yaml_path: Union[str, Path]):
        """Save configuration to YAML file"""
        yaml_path = Path(yaml_path)
        yaml_path.parent.mkdir(parents=True, exist_ok=True)

        with open(yaml_path, "w", encoding="utf-8") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


# Global configuration instance
_config: Optional[ReadinessConfig] = None


def get_config(config_path: Optional[Path] = None) -> ReadinessConfig:
    """Get or create configuration instance (singleton pattern)"""
    global _config

    if _config is None:
        if config_path and config_path.exists():
            _config = ReadinessConfig.from_yaml(config_path)
        else:
            _config = ReadinessConfig()

    return _config


def set_config(config: Optional[ReadinessConfig]):
    """Set configuration (useful for testing)"""
    global _config
    _config = config
