"""
Data contracts and schemas for the field readiness system.
Ensures document consistency and provides validation.

Field aliases follow the camelCase shape of the stored documents, so
``model_validate`` accepts raw documents and ``to_document`` writes them back.
"""
from datetime import date, datetime
from typing import Optional, List, Any
import re

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fieldready.core import constants as C
from fieldready.core.types import (
    FieldID, DateISO, EpochMs, Feel, TruthSource
)

_DATE_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def coerce_float(value: Any) -> Optional[float]:
    """Return a finite float or None for anything unusable"""
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if np.isfinite(out) else None


def normalize_date_iso(value: Any) -> DateISO:
    """Accept dates, datetimes, timestamps and ISO strings; return YYYY-MM-DD"""
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    text = str(value or "").strip()[:10]
    if not _DATE_ISO_RE.match(text):
        raise ValueError(f"Not an ISO date: {value!r}")
    # Calendar check: rejects 2025-02-30 and month 13
    date.fromisoformat(text)
    return text


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_document(self) -> dict:
        """Serialize with stored (aliased) field names"""
        return self.model_dump(by_alias=True, mode="json")


class WeatherRow(_Document):
    """One day of weather for a field (history or forecast)"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    date_iso: DateISO = Field(alias="dateISO")

    # Core drivers; missing values degrade to 0
    rain_in: float = Field(0.0, alias="rainIn")
    temp_f: float = Field(0.0, alias="tempF")
    wind_mph: float = Field(0.0, alias="windMph")
    rh: float = Field(0.0, alias="rh")
    solar_wm2: float = Field(0.0, alias="solarWm2")

    # Light-influence nudges; missing values contribute nothing
    vpd_kpa: Optional[float] = Field(None, alias="vpdKpa")
    cloud_pct: Optional[float] = Field(None, alias="cloudPct")
    sm010: Optional[float] = Field(None, alias="sm010")
    st010_f: Optional[float] = Field(None, alias="st010F")
    et0_in: Optional[float] = Field(None, alias="et0In")

    @field_validator("date_iso", mode="before")
    @classmethod
    def validate_date(cls, v):
        return normalize_date_iso(v)

    @field_validator("rain_in", mode="before")
    @classmethod
    def validate_rain(cls, v):
        """Rain is never negative"""
        return max(0.0, coerce_float(v) or 0.0)

    @field_validator("temp_f", "wind_mph", "rh", "solar_wm2", mode="before")
    @classmethod
    def validate_driver(cls, v):
        out = coerce_float(v)
        return 0.0 if out is None else out

    @field_validator("vpd_kpa", "cloud_pct", "sm010", "st010_f", "et0_in", mode="before")
    @classmethod
    def validate_optional(cls, v):
        return coerce_float(v)


class WeatherSeries(BaseModel):
    """Ordered daily history plus forecast rows for one field"""
    history: List[WeatherRow] = Field(default_factory=list)
    forecast: List[WeatherRow] = Field(default_factory=list)

    @field_validator("history", "forecast")
    @classmethod
    def sort_by_date(cls, rows: List[WeatherRow]) -> List[WeatherRow]:
        """Order rows by date, keeping the last row seen for a repeated date"""
        by_date = {}
        for row in rows:
            by_date[row.date_iso] = row
        return [by_date[k] for k in sorted(by_date)]

    @property
    def is_empty(self) -> bool:
        return not self.history and not self.forecast

    def trailing(self, days: int) -> List[WeatherRow]:
        """Last ``days`` history rows"""
        if days <= 0:
            return []
        return list(self.history[-days:])

    @staticmethod
    def rows_from_frame(df: Optional[pd.DataFrame]) -> List[WeatherRow]:
        """Rows from a frame keyed by either alias or attribute column names"""
        if df is None or df.empty:
            return []
        frame = df.copy()
        if "dateISO" not in frame.columns and "date_iso" not in frame.columns:
            if "date" in frame.columns:
                frame = frame.rename(columns={"date": "dateISO"})
            else:
                frame = frame.reset_index().rename(columns={frame.index.name or "index": "dateISO"})
        # NaN cells are degraded by the row validators
        records = frame.to_dict(orient="records")
        return [WeatherRow.model_validate(r) for r in records]

    @classmethod
    def from_frames(cls, history: Optional[pd.DataFrame],
                    forecast: Optional[pd.DataFrame] = None) -> "WeatherSeries":
        return cls(history=cls.rows_from_frame(history),
                   forecast=cls.rows_from_frame(forecast))

    def to_frame(self) -> pd.DataFrame:
        """Concatenate history and forecast, flagging forecast rows"""
        records = []
        for is_forecast, rows in ((False, self.history), (True, self.forecast)):
            for row in rows:
                rec = row.model_dump()
                rec["is_forecast"] = is_forecast
                records.append(rec)
        columns = list(WeatherRow.model_fields) + ["is_forecast"]
        return pd.DataFrame.from_records(records, columns=columns)


class FieldProfile(_Document):
    """Field identity plus the operator-editable soil sliders"""
    id: FieldID
    farm_id: Optional[str] = Field(None, alias="farmId")
    name: str = ""
    soil_wetness: float = Field(C.DEFAULT_SOIL_WETNESS, alias="soilWetness")
    drainage_index: float = Field(C.DEFAULT_DRAINAGE_INDEX, alias="drainageIndex")
    tillable_acres: Optional[float] = Field(None, alias="tillable")
    latitude: Optional[float] = Field(None, alias="lat")
    longitude: Optional[float] = Field(None, alias="lng")

    @field_validator("soil_wetness", mode="before")
    @classmethod
    def validate_soil_wetness(cls, v):
        out = coerce_float(v)
        return C.DEFAULT_SOIL_WETNESS if out is None else float(np.clip(out, 0, 100))

    @field_validator("drainage_index", mode="before")
    @classmethod
    def validate_drainage_index(cls, v):
        out = coerce_float(v)
        return C.DEFAULT_DRAINAGE_INDEX if out is None else float(np.clip(out, 0, 100))

    @property
    def soil_hold(self) -> float:
        return self.soil_wetness / 100.0

    @property
    def drain_poor(self) -> float:
        return self.drainage_index / 100.0


class StorageState(_Document):
    """Persisted truth storage for one field"""
    storage_final: float = Field(alias="storageFinal", ge=0)
    as_of_date_iso: Optional[DateISO] = Field(None, alias="asOfDateISO")
    smax_at_save: float = Field(alias="SmaxAtSave", gt=0)
    source: TruthSource

    # Audit
    updated_at_ms: Optional[EpochMs] = Field(None, alias="updatedAtMs")
    updated_by: Optional[str] = Field(None, alias="updatedBy")
    previous_storage: Optional[float] = Field(None, alias="previousStorage")
    storage_mult: Optional[float] = Field(None, alias="storageMult")
    ref_field_id: Optional[FieldID] = Field(None, alias="refFieldId")
    op_key: Optional[str] = Field(None, alias="opKey")
    adjustment_id: Optional[str] = Field(None, alias="adjustmentId")

    @field_validator("as_of_date_iso", mode="before")
    @classmethod
    def validate_as_of(cls, v):
        return None if v in (None, "") else normalize_date_iso(v)

    @model_validator(mode="after")
    def validate_within_capacity(self):
        """Ensure 0 <= storageFinal <= SmaxAtSave"""
        if self.storage_final > self.smax_at_save + 1e-9:
            raise ValueError(
                f"storageFinal {self.storage_final} exceeds SmaxAtSave {self.smax_at_save}"
            )
        return self


class CalibrationAdjustment(_Document):
    """Audit entry for one applied global calibration"""
    id: str
    feel: Feel
    anchor_readiness: int = Field(alias="anchorReadiness", ge=0, le=100)
    target_readiness: int = Field(alias="targetReadiness", ge=0, le=100)
    delta: int
    storage_mult: float = Field(alias="storageMult", gt=0)
    forced_storage: float = Field(alias="forcedStorage", ge=0)
    ref_field_id: FieldID = Field(alias="refFieldId")
    op_key: str = Field(alias="opKey")
    threshold: int = Field(ge=0, le=100)
    ref_storage_before: float = Field(alias="refStorageBefore", ge=0)
    ref_smax: float = Field(alias="refSmax", gt=0)
    fields_written: int = Field(0, alias="fieldsWritten", ge=0)
    fields_failed: int = Field(0, alias="fieldsFailed", ge=0)
    created_at_ms: EpochMs = Field(alias="createdAtMs")
    created_by: Optional[str] = Field(None, alias="createdBy")
    is_global: bool = Field(True, alias="global")


class GlobalTuning(_Document):
    """Fleet-wide multipliers learned from calibration history"""
    dry_loss_mult: float = Field(C.NEUTRAL_MULT, alias="DRY_LOSS_MULT")
    rain_eff_mult: float = Field(C.NEUTRAL_MULT, alias="RAIN_EFF_MULT")

    last_adjustment_id: Optional[str] = Field(None, alias="lastAdjustmentId")
    last_storage_mult: Optional[float] = Field(None, alias="lastStorageMult")
    last_intent_factor: Optional[float] = Field(None, alias="lastIntentFactor")
    adjustments_learned: int = Field(0, alias="adjustmentsLearned", ge=0)
    updated_at_ms: Optional[EpochMs] = Field(None, alias="updatedAtMs")

    @field_validator("dry_loss_mult", "rain_eff_mult", mode="before")
    @classmethod
    def validate_mult(cls, v):
        out = coerce_float(v)
        if out is None or out <= 0:
            raise ValueError(f"Tuning multiplier must be a positive number: {v!r}")
        return out

    def clamped(self, lo: float, hi: float) -> "GlobalTuning":
        """Copy with both multipliers clipped to ``[lo, hi]``"""
        return self.model_copy(update={
            "dry_loss_mult": float(np.clip(self.dry_loss_mult, lo, hi)),
            "rain_eff_mult": float(np.clip(self.rain_eff_mult, lo, hi)),
        })


class CooldownState(_Document):
    """Time-based lock on global calibration"""
    last_applied_ms: EpochMs = Field(0, alias="lastAppliedMs")
    next_allowed_ms: EpochMs = Field(0, alias="nextAllowedMs")
    cooldown_hours: float = Field(C.DEFAULT_COOLDOWN_HOURS, alias="cooldownHours", ge=0)

    def is_locked(self, now_ms: EpochMs) -> bool:
        return bool(self.next_allowed_ms) and now_ms < self.next_allowed_ms

    def remaining_ms(self, now_ms: EpochMs) -> int:
        return max(0, int(self.next_allowed_ms) - int(now_ms)) if self.is_locked(now_ms) else 0
