"""Template acquisition coordinator."""

from .factory import build_coordinator
from .service import AcquireOptions, AcquisitionCoordinator, AcquisitionResult

__all__ = ["AcquireOptions", "AcquisitionCoordinator", "AcquisitionResult", "build_coordinator"]
