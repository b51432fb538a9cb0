"""Utility modules for ibsphere."""

from .logger import SimulationLogger
from .timer import Timer

__all__ = ["SimulationLogger", "Timer"]
