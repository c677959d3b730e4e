"""
leap_seconds.py

Leap seconds elapsed between the GPS epoch (1980-01-06) and a UTC time.
"""

from collections import namedtuple
from datetime import datetime, timedelta
from typing import List

OffsetEpoch = namedtuple("OffsetEpoch", ["epoch", "offset"])

# (UTC epoch at which the offset takes effect, GPS - UTC in seconds)
LEAP_SECOND_EPOCHS: List[OffsetEpoch] = [
    OffsetEpoch(datetime(1981, 7, 1), 1),
    OffsetEpoch(datetime(1982, 7, 1), 2),
    OffsetEpoch(datetime(1983, 7, 1), 3),
    OffsetEpoch(datetime(1985, 7, 1), 4),
    OffsetEpoch(datetime(1988, 1, 1), 5),
    OffsetEpoch(datetime(1990, 1, 1), 6),
    OffsetEpoch(datetime(1991, 1, 1), 7),
    OffsetEpoch(datetime(1992, 7, 1), 8),
    OffsetEpoch(datetime(1993, 7, 1), 9),
    OffsetEpoch(datetime(1994, 7, 1), 10),
    OffsetEpoch(datetime(1996, 1, 1), 11),
    OffsetEpoch(datetime(1997, 7, 1), 12),
    OffsetEpoch(datetime(1999, 1, 1), 13),
    OffsetEpoch(datetime(2006, 1, 1), 14),
    OffsetEpoch(datetime(2009, 1, 1), 15),
    OffsetEpoch(datetime(2012, 7, 1), 16),
    OffsetEpoch(datetime(2015, 7, 1), 17),
    OffsetEpoch(datetime(2017, 1, 1), 18),
]


def utc_gps_offset(time: datetime) -> timedelta:
    """
    Returns the number of leap seconds GPS time is ahead of UTC at `time`
    (a naive UTC datetime).  Zero before the first leap second after the
    GPS epoch.
    """
    offset = 0
    for i in range(len(LEAP_SECOND_EPOCHS)):
        if LEAP_SECOND_EPOCHS[i].epoch > time:
            break
        offset = LEAP_SECOND_EPOCHS[i].offset
    return timedelta(seconds=offset)
