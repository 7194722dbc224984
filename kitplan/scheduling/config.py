"""
Scheduling configuration module.

Calendar constants used by the shift calendar resolver and the schedule
computer. The pure scheduling layer never reads the clock or the environment;
everything it depends on is defined here or passed in.
"""

from typing import FrozenSet


class SchedulingConfig:
    """
    Configuration for shift-based scheduling calculations.
    """

    # datetime.weekday() values treated as weekend (Saturday, Sunday)
    WEEKEND_DAYS: FrozenSet[int] = frozenset({5, 6})

    # Start time used when a job has a scheduled date but no start time
    DEFAULT_START_TIME: str = '08:00'

    # Consecutive days without any capacity before the resolver gives up.
    # A valid shift set always has capacity within a week, so hitting this
    # means the shift configuration is unusable.
    MAX_IDLE_DAYS: int = 14

    @classmethod
    def is_weekend(cls, weekday: int) -> bool:
        """
        Check whether a ``datetime.weekday()`` value falls on the weekend.

        Args:
            weekday: 0 (Monday) to 6 (Sunday)

        Returns:
            bool: True for Saturday and Sunday
        """
        return weekday in cls.WEEKEND_DAYS
