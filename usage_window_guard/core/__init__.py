"""
Core modules for usage window estimation.

This package contains session windowing, baseline statistics, rate limit
detection, burn rate forecasting and the status estimation that composes
them.
"""

from .estimation import EstimationSnapshot, compute_current_status

__all__ = ["EstimationSnapshot", "compute_current_status"]
