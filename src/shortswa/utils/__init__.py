"""
Utilities for shortswa.

This module contains optional helpers:
- Seeding and parameter counting
- Per-token cost model for local mixers (arithmetic intensity)
"""

from .cost import MixerCost, mixer_cost
from .seeding import count_parameters, set_seed

__all__ = [
    "MixerCost",
    "mixer_cost",
    "count_parameters",
    "set_seed",
]
