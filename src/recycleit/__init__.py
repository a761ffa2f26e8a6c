"""RecycleIt gamification core: points, leagues and recycling goals."""

__version__ = "0.1.0"
