"""Data models for persisted portfolio history."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class HistoricalDataPoint:
    """Portfolio value snapshot for one calendar day (``YYYY-MM-DD``)."""

    date: str
    total_value: float
    day_change: float
    day_change_percent: float

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary."""
        return {
            "date": self.date,
            "totalValue": self.total_value,
            "dayChange": self.day_change,
            "dayChangePercent": self.day_change_percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoricalDataPoint":
        """
        Build a point from its stored form.

        Raises:
            ValueError: If a field is missing or not numeric
        """
        try:
            return cls(
                date=str(data["date"]),
                total_value=float(data["totalValue"]),
                day_change=float(data.get("dayChange", 0.0)),
                day_change_percent=float(data.get("dayChangePercent", 0.0)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid history point: {e}") from e
