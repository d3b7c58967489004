"""
Field Readiness Data Sources Package.

Weather series and field profile sources consumed by the storage model,
calibration engine and forecaster.

Usage:
------
>>> from fieldready.data.sources import CachedWeatherProvider, DocumentFieldSource
>>> from fieldready.data.stores import JsonFileDocumentStore

>>> store = JsonFileDocumentStore("./data/readiness")
>>> weather = CachedWeatherProvider(store)
>>> series = weather.get("field-1")
>>> fields = DocumentFieldSource(store).list_fields()
"""

# Base classes
from fieldready.data.sources.base import (
    WeatherSeriesProvider,
    FieldSource,
)

# Weather
from fieldready.data.sources.weather import (
    InMemoryWeatherProvider,
    CachedWeatherProvider,
    aggregate_hourly_to_daily,
)

# Fields
from fieldready.data.sources.fields import (
    InMemoryFieldSource,
    DocumentFieldSource,
)

__all__ = [
    # Base classes
    "WeatherSeriesProvider",
    "FieldSource",

    # Weather
    "InMemoryWeatherProvider",
    "CachedWeatherProvider",
    "aggregate_hourly_to_daily",

    # Fields
    "InMemoryFieldSource",
    "DocumentFieldSource",
]
