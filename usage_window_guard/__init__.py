"""
Estimate rate-limit session windows, usage baselines and burn rates
from assistant usage logs.
"""

__version__ = "0.1.0"
