from .gpst import (
    GPS_EPOCH,
    SECONDS_IN_DAY,
    SECONDS_IN_WEEK,
    convert_datetime_to_gps_seconds,
    GPSTime,
)

from .leap_seconds import OffsetEpoch, LEAP_SECOND_EPOCHS, utc_gps_offset
