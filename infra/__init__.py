"""Infrastructure modules for solharvest"""

from .metrics import MetricsRecorder, CycleStats  # noqa: F401
from .state_store import StateStore  # noqa: F401
from .throttle import Throttle, ThrottlePolicy  # noqa: F401

__all__ = [
	"MetricsRecorder",
	"CycleStats",
	"StateStore",
	"Throttle",
	"ThrottlePolicy",
]
