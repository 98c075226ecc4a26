"""ScreenGate: admission control and job lifecycle for a metered screening service."""

from .errors import ScreenGateError
from .schemas import JobStatus, ScreeningInput
from .service import ScreeningService

__version__ = "0.1.0"

__all__ = ["ScreenGateError", "JobStatus", "ScreeningInput", "ScreeningService", "__version__"]
