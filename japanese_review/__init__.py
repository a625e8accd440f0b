"""
Japanese Review Engine

Spaced re-exposure of vocabulary and per-character kana mastery tracking.
"""

from . import errors
from . import db
from . import scheduler
from . import structured
from . import vocabulary
from . import characters
from . import results

__version__ = "0.1.0"
__all__ = ["errors", "db", "scheduler", "structured", "vocabulary", "characters", "results"]
