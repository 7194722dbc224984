"""
Station configuration module.

Tunables for execution stations and for the kit-progress poller.
"""

import os


class StationConfig:
    """
    Configuration for station assignment and progress reconciliation.
    """

    # Display name for an assigned station number
    STATION_NAME_FORMAT: str = "Station {number}"

    # Seconds between progress polls; also the bound on how stale a
    # station's displayed kit count can be
    PROGRESS_POLL_INTERVAL_SECONDS: int = int(os.environ.get("PROGRESS_POLL_INTERVAL_SECONDS", "2"))

    @classmethod
    def station_name(cls, number: int) -> str:
        """
        Name shown on an execution station.

        Args:
            number: Station number returned by assign_station (1-based)

        Returns:
            str: e.g. "Station 3"
        """
        return cls.STATION_NAME_FORMAT.format(number=number)
