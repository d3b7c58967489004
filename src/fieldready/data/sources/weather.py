"""
Concrete weather series providers.

- InMemoryWeatherProvider: series supplied by the caller (tests, notebooks)
- CachedWeatherProvider: reads the scheduler-written weather cache
  documents (``field_weather_cache/{fieldId}``) from a DocumentStore

Also normalizes hourly weather payloads into daily model rows.
"""
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from pydantic import ValidationError

from fieldready.core import constants as C
from fieldready.core.types import DocumentStore, FieldID
from fieldready.data.contracts import WeatherRow, WeatherSeries
from fieldready.data.sources.base import WeatherSeriesProvider

# Hourly columns and how they reduce to one daily value
HOURLY_CORE_COLUMNS = ["rain_mm", "temp_c", "wind_mph", "rh_pct", "solar_wm2"]
HOURLY_EXT_COLUMNS = [
    "cloud_cover_pct",
    "vapour_pressure_deficit_kpa",
    "soil_moisture_0_10",
    "soil_temp_c_0_10",
]


def _c_to_f(series: pd.Series) -> pd.Series:
    return series * 9.0 / 5.0 + 32.0


def _hourly_by_date(frame: Optional[pd.DataFrame], columns: List[str]) -> pd.DataFrame:
    """Numeric hourly frame with a dateISO column taken from ``time``"""
    if frame is None or frame.empty or "time" not in frame.columns:
        empty = {"dateISO": pd.Series(dtype=str)}
        empty.update({col: pd.Series(dtype=float) for col in columns})
        return pd.DataFrame(empty)

    out = frame.copy()
    out["time"] = out["time"].astype(str)
    out = out[out["time"].str.len() >= 10]
    out["dateISO"] = out["time"].str.slice(0, 10)
    for col in columns:
        out[col] = pd.to_numeric(out[col], errors="coerce") if col in out.columns else np.nan
    return out[["dateISO"] + columns]


def aggregate_hourly_to_daily(
    hourly_core: Optional[pd.DataFrame],
    hourly_ext: Optional[pd.DataFrame] = None,
    daily: Optional[pd.DataFrame] = None,
    today_iso: Optional[str] = None,
    keep_days: int = 30,
) -> List[WeatherRow]:
    """
    Reduce hourly weather to daily model rows.

    Rain (mm) is summed and converted to inches; temperature (C) is
    averaged and converted to F; wind, humidity, solar, cloud, VPD and
    shallow soil values are daily means. Daily ET0 (mm) comes from the
    optional ``daily`` frame. Rows after ``today_iso`` are dropped and only
    the last ``keep_days`` are kept.

    Args:
        hourly_core: Columns ``time`` plus rain_mm, temp_c, wind_mph,
            rh_pct, solar_wm2
        hourly_ext: Columns ``time`` plus cloud_cover_pct,
            vapour_pressure_deficit_kpa, soil_moisture_0_10, soil_temp_c_0_10
        daily: Columns ``date`` (or ``time``/``dateISO``) plus et0_mm
        today_iso: Last date to keep (inclusive)
        keep_days: Trailing window length

    Returns:
        Ordered list of WeatherRow
    """
    core = _hourly_by_date(hourly_core, HOURLY_CORE_COLUMNS)
    ext = _hourly_by_date(hourly_ext, HOURLY_EXT_COLUMNS)

    core_daily = core.groupby("dateISO").agg(
        rain_mm=("rain_mm", "sum"),
        temp_c=("temp_c", "mean"),
        wind_mph=("wind_mph", "mean"),
        rh_pct=("rh_pct", "mean"),
        solar_wm2=("solar_wm2", "mean"),
    )
    ext_daily = ext.groupby("dateISO")[HOURLY_EXT_COLUMNS].mean()
    days = core_daily.join(ext_daily, how="outer").sort_index()

    if days.empty:
        return []

    out = pd.DataFrame(index=days.index)
    out["rainIn"] = (days["rain_mm"].fillna(0.0) / C.MM_PER_INCH).round(2)
    out["tempF"] = _c_to_f(days["temp_c"]).round(0)
    out["windMph"] = days["wind_mph"].round(0)
    out["rh"] = days["rh_pct"].round(0)
    out["solarWm2"] = days["solar_wm2"].round(0)
    out["cloudPct"] = days["cloud_cover_pct"].round(0)
    out["vpdKpa"] = days["vapour_pressure_deficit_kpa"].round(2)
    out["sm010"] = days["soil_moisture_0_10"].round(3)
    out["st010F"] = _c_to_f(days["soil_temp_c_0_10"]).round(0)
    out["et0In"] = np.nan

    if daily is not None and not daily.empty and "et0_mm" in daily.columns:
        date_col = next((c for c in ("dateISO", "date", "time") if c in daily.columns), None)
        if date_col is not None:
            et0 = pd.to_numeric(daily["et0_mm"], errors="coerce")
            et0.index = daily[date_col].astype(str).str.slice(0, 10)
            et0 = et0[~et0.index.duplicated(keep="last")]
            out["et0In"] = (et0.reindex(out.index) / C.MM_PER_INCH).round(2)

    if today_iso:
        out = out[out.index <= today_iso]
    out = out.tail(keep_days)

    out.index.name = "dateISO"
    return WeatherSeries.rows_from_frame(out.reset_index())


class InMemoryWeatherProvider(WeatherSeriesProvider):
    """Weather series held in a dict keyed by field id"""

    def __init__(self, series: Optional[Dict[FieldID, WeatherSeries]] = None):
        super().__init__("in_memory_weather")
        self._series: Dict[FieldID, WeatherSeries] = dict(series or {})

    def put(self, field_id: FieldID, series: WeatherSeries):
        self._series[field_id] = series

    def get(self, field_id: FieldID) -> WeatherSeries:
        series = self._series.get(field_id)
        if series is None:
            self.logger.warning(f"No weather series for field {field_id}")
            return WeatherSeries()
        return series


class CachedWeatherProvider(WeatherSeriesProvider):
    """
    Reads ``dailySeries`` (history) and ``dailySeriesFcst`` (forecast) from
    the weather cache collection. Rows that fail validation are skipped.
    """

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["weather"]):
        super().__init__("weather_cache")
        self.store = store
        self.collection = collection

    def _parse_rows(self, field_id: FieldID, raw_rows: Any, key: str) -> List[WeatherRow]:
        if not isinstance(raw_rows, list):
            if raw_rows is not None:
                self.logger.warning(f"{key} for {field_id} is not a list; ignoring")
            return []

        rows = []
        for raw in raw_rows:
            if not isinstance(raw, dict):
                self.logger.warning(f"Skipping non-object {key} row for {field_id}")
                continue
            if "dateISO" not in raw and "date" in raw:
                raw = {**raw, "dateISO": raw["date"]}
            try:
                rows.append(WeatherRow.model_validate(raw))
            except ValidationError as e:
                self.logger.warning(
                    f"Skipping invalid {key} row for {field_id}: {e.errors()[0]['msg']}"
                )
        return rows

    def get(self, field_id: FieldID) -> WeatherSeries:
        doc = self.store.get(self.collection, field_id)
        if doc is None:
            self.logger.warning(f"No cached weather for field {field_id}")
            return WeatherSeries()

        return WeatherSeries(
            history=self._parse_rows(field_id, doc.get("dailySeries"), "dailySeries"),
            forecast=self._parse_rows(field_id, doc.get("dailySeriesFcst"), "dailySeriesFcst"),
        )
