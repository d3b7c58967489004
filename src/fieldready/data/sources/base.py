"""
Abstract base classes for data sources.
Provides unified interface for weather series and field profiles.
"""
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional
import logging

from fieldready.core.types import FieldID
from fieldready.data.contracts import FieldProfile, WeatherSeries


class WeatherSeriesProvider(ABC):
    """
    Source of ordered daily weather per field: ~30 days of history plus
    ~7 days of forecast. Providers never raise for an unknown field; they
    return an empty series and log.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"fieldready.data.{name}")

    @abstractmethod
    def get(self, field_id: FieldID) -> WeatherSeries:
        """Return the series for one field"""
        pass

    def get_batch(self, field_ids: List[FieldID],
                  max_workers: int = 4) -> Dict[FieldID, WeatherSeries]:
        """
        Fetch series for multiple fields in parallel.
        """
        results = {}

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_field = {
                executor.submit(self.get, fid): fid
                for fid in field_ids
            }

            for future in as_completed(future_to_field):
                field_id = future_to_field[future]
                try:
                    results[field_id] = future.result(timeout=30)
                except Exception as e:
                    self.logger.error(f"Failed to load weather for {field_id}: {e}")
                    results[field_id] = WeatherSeries()

        return results

    def get_metadata(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.__class__.__name__}


class FieldSource(ABC):
    """Source of field profiles (identity plus soil sliders)"""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"fieldready.data.{name}")

    @abstractmethod
    def list_fields(self) -> List[FieldProfile]:
        """All known fields, ordered by id"""
        pass

    def get(self, field_id: FieldID) -> Optional[FieldProfile]:
        for profile in self.list_fields():
            if profile.id == field_id:
                return profile
        return None
