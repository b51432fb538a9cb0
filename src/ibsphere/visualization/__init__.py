"""Visualization for ibsphere."""

from .animator import Animator

__all__ = ["Animator"]
