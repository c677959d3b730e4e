from typing import List

import pytest

from gnss_fetch.rinex_io.crinex_utils import (
    CLOCK_FRACTION_DIGITS,
    OBSERVATION_FRACTION_DIGITS,
    CrinexError,
    CrinexLayout,
    DifferenceState,
    EpochSkipped,
    decode_field,
    format_clock,
    format_comment,
    format_epoch_lines,
    format_observation,
    format_observation_record,
    repair_line,
    split_literal,
)


def _backward_difference(values: List[int], order: int) -> int:
    for _ in range(order):
        values = [b - a for a, b in zip(values[:-1], values[1:])]
    return values[-1]


def _as_int(state: DifferenceState) -> int:
    upper, lower = state.value
    return upper * state.unit + lower


def test_repair_line_copies_overwrites_and_blanks():
    assert repair_line("abcdef", "  X&") == "abX ef"
    assert repair_line("abcdef", "") == "abcdef"


def test_repair_line_extends_previous():
    assert repair_line("ab", "   c&d") == "ab c d"
    assert repair_line("", "> 2024&01") == "> 2024 01"


def test_split_literal():
    assert split_literal("12345", 5) == (0, 12345)
    assert split_literal("-12345", 5) == (0, -12345)
    assert split_literal("123456", 5) == (1, 23456)
    assert split_literal("-123456", 5) == (-1, -23456)
    assert split_literal("123456789", 8) == (1, 23456789)
    assert split_literal("12345678", 8) == (0, 12345678)


@pytest.mark.parametrize("token", ["", "-", "12a", "1.5"])
def test_split_literal_rejects_non_integers(token):
    with pytest.raises(EpochSkipped):
        split_literal(token, 5)


@pytest.mark.parametrize("arc_order", range(6))
def test_integration_recovers_values(arc_order):
    values = [
        20000000123,
        20000100223,
        19999900001,
        -5,
        123456789012,
        7,
        -99999,
        0,
        31415926535,
        -123456789012,
        -123456789013,
    ]
    previous = None
    for n, value in enumerate(values):
        literal = _backward_difference(values[: n + 1], min(n, arc_order))
        token = f"{arc_order}&{literal}" if n == 0 else str(literal)
        state = decode_field(token, previous, OBSERVATION_FRACTION_DIGITS)
        assert state.order == min(n, arc_order)
        assert _as_int(state) == value
        upper, lower = state.value
        assert not (upper < 0 < lower or lower < 0 < upper)
        previous = state


def test_integration_keeps_every_accumulator_sign_consistent():
    previous = decode_field("2&100000", None, OBSERVATION_FRACTION_DIGITS)
    for token in ["-100001", "-3", "250000", "-7"]:
        state = decode_field(token, previous, OBSERVATION_FRACTION_DIGITS)
        for j in range(state.order + 1):
            upper, lower = int(state.upper[j]), int(state.lower[j])
            assert not (upper < 0 < lower or lower < 0 < upper)
            assert abs(lower) < state.unit
        previous = state


def test_clock_arc_of_order_one():
    clock = decode_field("1&1000", None, CLOCK_FRACTION_DIGITS)
    assert clock.value == (0, 1000)
    clock = decode_field("5", clock, CLOCK_FRACTION_DIGITS)
    assert clock.value == (0, 1005)
    clock = decode_field("3", clock, CLOCK_FRACTION_DIGITS)
    assert clock.value == (0, 1008)
    assert format_clock(*clock.value, 4) == "  .000000001008"


def test_carry_into_upper():
    state = decode_field("1&99999", None, OBSERVATION_FRACTION_DIGITS)
    state = decode_field("1", state, OBSERVATION_FRACTION_DIGITS)
    assert state.value == (1, 0)


def test_continuing_field_without_previous_skips_epoch():
    with pytest.raises(EpochSkipped):
        decode_field("100", None, OBSERVATION_FRACTION_DIGITS)
    with pytest.raises(EpochSkipped):
        decode_field("100", DifferenceState.blank(OBSERVATION_FRACTION_DIGITS), OBSERVATION_FRACTION_DIGITS)


def test_arc_order_limit():
    decode_field("5&100", None, OBSERVATION_FRACTION_DIGITS)
    with pytest.raises(CrinexError):
        decode_field("6&100", None, OBSERVATION_FRACTION_DIGITS)
    with pytest.raises(CrinexError):
        decode_field("5&100", None, OBSERVATION_FRACTION_DIGITS, max_arc_order=4)


def test_new_arc_ignores_previous_state():
    previous = decode_field("3&500", None, OBSERVATION_FRACTION_DIGITS)
    state = decode_field("2&123", previous, OBSERVATION_FRACTION_DIGITS)
    assert state.arc_order == 2
    assert state.order == 0
    assert state.value == (0, 123)


@pytest.mark.parametrize(
    "upper, lower, shift, expected",
    [
        (0, 12345678, 1, "  .012345678"),
        (1, 23456789, 4, "  .000123456789"),
        (0, 1000, 4, "  .000000001000"),
        (123, 0, 1, "12.300000000"),
        (-12, -5, 1, "-1.200000005"),
        (0, -12345678, 1, " -.012345678"),
        (-5, 0, 1, " -.500000000"),
        (-1, 50000000, 4, " -.000050000000"),
        (991234, 5, 4, "99.123400000005"),
    ],
)
def test_format_clock(upper, lower, shift, expected):
    assert format_clock(upper, lower, shift) == expected


@pytest.mark.parametrize("upper, shift", [(1000, 1), (-100, 1), (1000000, 4)])
def test_format_clock_out_of_range(upper, shift):
    with pytest.raises(CrinexError):
        format_clock(upper, 0, shift)


@pytest.mark.parametrize(
    "upper, lower, expected",
    [
        (200000, 123, "  20000000.123"),
        (-1, -23456, "      -123.456"),
        (0, 45000, "        45.000"),
        (0, -12345, "       -12.345"),
        (0, 1234, "         1.234"),
        (0, -1234, "        -1.234"),
        (0, 250, "          .250"),
        (0, -250, "         -.250"),
        (0, 0, "          .000"),
        (99999999, 99999, "9999999999.999"),
    ],
)
def test_format_observation(upper, lower, expected):
    text = format_observation(upper, lower)
    assert text == expected
    assert len(text) == 14


@pytest.mark.parametrize("upper", [100000000, -10000000])
def test_format_observation_out_of_range(upper):
    with pytest.raises(CrinexError):
        format_observation(upper, 0)


def test_layouts():
    rinex2 = CrinexLayout.for_versions(1, 2)
    assert (rinex2.crinex_epoch_marker, rinex2.rinex_epoch_marker) == ("&", " ")
    assert rinex2.epoch_anchor_indices == (26, 27, 28)
    assert rinex2.clock_shift == 1
    rinex4 = CrinexLayout.for_versions(3, 4)
    assert (rinex4.crinex_epoch_marker, rinex4.rinex_epoch_marker) == (">", ">")
    assert rinex4.epoch_anchor_indices == (29, 30, 31)
    assert (rinex4.event_flag_index, rinex4.num_sats_index, rinex4.sat_list_index) == (31, 32, 41)
    with pytest.raises(CrinexError):
        CrinexLayout.for_versions(3, 5)


def _observation(token: str) -> DifferenceState:
    return decode_field(token, None, OBSERVATION_FRACTION_DIGITS)


def test_observation_record_crinex3_keeps_flags_of_blank_fields():
    layout = CrinexLayout.for_versions(3, 3)
    fields = [_observation("0&20000000123"), DifferenceState.blank(OBSERVATION_FRACTION_DIGITS)]
    lines, flags = format_observation_record("G01", fields, "1234", layout)
    assert lines == ["G01  20000000.12312" + " " * 14 + "34"]
    assert flags == "1234"


def test_observation_record_crinex1_blanks_flags_of_blank_fields():
    layout = CrinexLayout.for_versions(1, 2)
    fields = [DifferenceState.blank(OBSERVATION_FRACTION_DIGITS), _observation("0&250")]
    lines, flags = format_observation_record("G01", fields, "12 5", layout)
    assert lines == [" " * 16 + "          .250 5"]
    assert flags == "   5"


def test_observation_record_rinex2_wraps_every_five_fields():
    layout = CrinexLayout.for_versions(1, 2)
    fields = [_observation(f"0&{i}000") for i in range(1, 8)]
    lines, _ = format_observation_record("G01", fields, "", layout)
    assert len(lines) == 2
    assert lines[0] == "".join(f"         {i}.000  " for i in range(1, 6)).rstrip()
    assert lines[1] == "         6.000  " + "         7.000"


def test_rinex2_epoch_with_continuation_lines():
    layout = CrinexLayout.for_versions(1, 2)
    sats = "".join(f"G{i:02d}" for i in range(1, 15))
    epoch_line = " 24  1 15  0  0  0.0000000  0 14" + sats
    lines = format_epoch_lines(epoch_line, 14, "  .012345678", layout)
    assert lines == [
        epoch_line[:68] + "  .012345678",
        " " * 32 + "G13G14",
    ]
    lines = format_epoch_lines(epoch_line, 14, None, layout)
    assert lines[0] == epoch_line[:68]
    padded = " 24  1 15  0  0  0.0000000  0  2G01G05" + " " * 20
    assert format_epoch_lines(padded, 2, None, layout) == [padded.rstrip()]


def test_rinex3_epoch_line():
    layout = CrinexLayout.for_versions(3, 3)
    epoch_line = "> 2024 01 15 00 00  0.0000000  0  2      G01G05"
    assert format_epoch_lines(epoch_line, 2, None, layout) == ["> 2024 01 15 00 00  0.0000000  0  2"]
    assert format_epoch_lines(epoch_line, 2, "  .000123456789", layout) == [
        "> 2024 01 15 00 00  0.0000000  0  2      " + "  .000123456789"
    ]


def test_format_comment():
    assert format_comment("hello", 2) == [" " * 28 + "4  1", f"{'hello':<60}COMMENT"]
    assert format_comment("hello", 3) == [">" + " " * 30 + "4  1", f"{'hello':<60}COMMENT"]
