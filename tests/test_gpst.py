from datetime import datetime, timedelta

import pytest

from gnss_fetch.time import GPS_EPOCH, GPSTime, utc_gps_offset


def test_gps_epoch():
    gpst = GPSTime.from_datetime(GPS_EPOCH)
    assert gpst.whole_seconds == 0
    assert gpst.frac_seconds == 0
    assert gpst.week_num == 0


@pytest.mark.parametrize(
    "dt, offset",
    [
        (datetime(1980, 6, 1), 0),
        (datetime(1981, 7, 1), 1),
        (datetime(2016, 12, 31, 23, 59, 59), 17),
        (datetime(2017, 1, 1), 18),
        (datetime(2024, 1, 15), 18),
    ],
)
def test_utc_gps_offset(dt, offset):
    assert utc_gps_offset(dt) == timedelta(seconds=offset)


def test_week_and_time_of_week():
    gpst = GPSTime.from_datetime(datetime(2024, 1, 15, 12, 0, 0, 500000))
    assert gpst.week_num == 2297
    assert gpst.day_of_week == 1
    assert gpst.tow == pytest.approx(86400 + 43200 + 18 + 0.5)


def test_round_trip():
    dt = datetime(2024, 1, 15, 12, 30, 15, 250000)
    gpst = GPSTime.from_datetime(dt)
    assert gpst.to_datetime() == dt
    assert GPSTime.from_week_and_tow(gpst.week_num, gpst.tow) == gpst


def test_invalid_fraction():
    with pytest.raises(ValueError):
        GPSTime(0, 1.5)
