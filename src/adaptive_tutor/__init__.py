"""
Adaptive tutoring engine.

Models each learner's mastery of concepts, runs guided question-and-answer sessions
from a concept catalog, and produces prioritized learning recommendations.
"""

from .config.loader import load_settings
from .system import TutoringSystem

__all__ = ["TutoringSystem", "load_settings"]
