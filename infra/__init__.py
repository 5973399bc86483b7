"""Infrastructure modules for dlmm-autopilot"""

from .history_store import SQLiteHistoryStore  # noqa: F401
from .metrics import MetricsRecorder  # noqa: F401
from .pool_provider import HttpPoolDataProvider  # noqa: F401

__all__ = [
	"SQLiteHistoryStore",
	"MetricsRecorder",
	"HttpPoolDataProvider",
]
