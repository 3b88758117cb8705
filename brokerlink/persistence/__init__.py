from .history_store import HistoryStore
from .models import HistoricalDataPoint

__all__ = ["HistoricalDataPoint", "HistoryStore"]
