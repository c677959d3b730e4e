"""
Utilities for doing GPST time conversions.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from .leap_seconds import utc_gps_offset


GPS_EPOCH = datetime(year=1980, month=1, day=6, hour=0, minute=0, second=0)
SECONDS_IN_DAY = 86400
SECONDS_IN_WEEK = SECONDS_IN_DAY * 7


def convert_datetime_to_gps_seconds(dt: datetime) -> float:
    delta = dt - GPS_EPOCH + utc_gps_offset(dt)
    return delta.days * SECONDS_IN_DAY + delta.seconds + delta.microseconds / 1e6


@dataclass(slots=True)
class GPSTime:
    whole_seconds: int
    frac_seconds: float

    def __post_init__(self):
        if self.frac_seconds < 0 or self.frac_seconds >= 1:
            raise ValueError("frac_seconds must be in range [0, 1)")

    @property
    def week_num(self) -> int:
        return self.whole_seconds // SECONDS_IN_WEEK

    @property
    def tow(self) -> float:
        """Seconds since the start of the GPS week."""
        return self.whole_seconds - self.week_num * SECONDS_IN_WEEK + self.frac_seconds

    @property
    def day_of_week(self) -> int:
        return int(self.tow // SECONDS_IN_DAY)

    def to_datetime(self) -> datetime:
        """
        Converts GPSTime to a naive UTC `datetime` object.
        """
        microseconds = round(self.frac_seconds * 1e6)
        gps_dt = GPS_EPOCH + timedelta(seconds=self.whole_seconds, microseconds=microseconds)
        # the leap second count is looked up at the GPS time; close enough
        # except within the leap second itself
        return gps_dt - utc_gps_offset(gps_dt - utc_gps_offset(gps_dt))

    @staticmethod
    def from_datetime(dt: datetime) -> "GPSTime":
        """
        Computes GPSTime from a naive UTC `datetime` object.

        Inputs:
            dt: datetime object
        Returns:
            GPSTime object
        """
        delta = dt - GPS_EPOCH + utc_gps_offset(dt)
        return GPSTime(delta.days * SECONDS_IN_DAY + delta.seconds, delta.microseconds / 1e6)

    @staticmethod
    def from_week_and_tow(week_num: int, tow: float) -> "GPSTime":
        whole_seconds = int(tow)
        return GPSTime(week_num * SECONDS_IN_WEEK + whole_seconds, tow - whole_seconds)
