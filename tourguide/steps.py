"""Match the live position to the nearest turn-by-turn instruction."""

from typing import Optional, Sequence

from .geo import squared_planar_distance
from .models import DirectionStep, UserPosition


class StepSynchronizer:
    """Tracks which direction step the user is currently on"""

    def __init__(self):
        self.index: Optional[int] = None

    def reset(self):
        self.index = None

    @staticmethod
    def current_step(position: UserPosition, steps: Sequence[DirectionStep]) -> Optional[int]:
        """Index of the step whose maneuver point is closest, or None without steps"""
        closest = None
        min_dist = float("inf")
        for i, step in enumerate(steps):
            loc = step.maneuver_location
            d = squared_planar_distance(position.lat, position.lon, loc.lat, loc.lon)
            if d < min_dist:
                min_dist = d
                closest = i
        return closest

    def update(self, position: UserPosition, steps: Sequence[DirectionStep]) -> Optional[int]:
        """Recompute the current step. Returns the new index only when it changed."""
        index = self.current_step(position, steps)
        if index is None or index == self.index:
            return None
        self.index = index
        return index
