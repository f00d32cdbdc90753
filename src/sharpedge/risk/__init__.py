"""Position sizing and exposure limits."""

from sharpedge.risk.exposure import ExposureSnapshot, apply_exposure_limits
from sharpedge.risk.sizing import SizeDecision, kelly_fraction, recommended_fraction, size_position

__all__ = [
    "ExposureSnapshot",
    "apply_exposure_limits",
    "SizeDecision",
    "kelly_fraction",
    "recommended_fraction",
    "size_position",
]
