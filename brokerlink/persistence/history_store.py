"""JSON file persistence for daily portfolio history."""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from .models import HistoricalDataPoint

logger = logging.getLogger(__name__)


class HistoryStore:
    """Keeps at most ``retention`` daily points, ascending by date.

    Read and write failures are logged and never raised.
    """

    def __init__(self, path: Union[str, Path], retention: int = 365):
        """
        Initialize the store.

        Args:
            path: JSON file holding the points
            retention: Number of most recent points kept
        """
        self.path = Path(path).expanduser()
        self.retention = retention
        self._points: Optional[List[HistoricalDataPoint]] = None

    def load(self) -> List[HistoricalDataPoint]:
        """Return all stored points, ascending by date."""
        if self._points is not None:
            return list(self._points)

        points: List[HistoricalDataPoint] = []
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read history at {self.path}, starting empty: {e}")
                raw = []
            if not isinstance(raw, list):
                logger.warning("History file has unexpected shape, starting empty")
                raw = []
            for entry in raw:
                try:
                    points.append(HistoricalDataPoint.from_dict(entry))
                except ValueError as e:
                    logger.warning(f"Skipping malformed history point: {e}")

        points.sort(key=lambda p: p.date)
        self._points = points[-self.retention:]
        return list(self._points)

    def save(self, points: List[HistoricalDataPoint]) -> bool:
        """
        Replace the stored points.

        Returns:
            True if the file was written
        """
        ordered = sorted(points, key=lambda p: p.date)[-self.retention:]
        self._points = ordered
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps([p.to_dict() for p in ordered]), encoding="utf-8")
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to save history to {self.path}: {e}")
            return False

    def upsert(self, point: HistoricalDataPoint) -> List[HistoricalDataPoint]:
        """
        Insert a point, replacing any existing point for the same date.

        Returns:
            The stored points after the update
        """
        points = [p for p in self.load() if p.date != point.date]
        points.append(point)
        self.save(points)
        return list(self._points or [])

    def clear(self) -> None:
        """Delete all history."""
        self._points = []
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete history {self.path}: {e}")
