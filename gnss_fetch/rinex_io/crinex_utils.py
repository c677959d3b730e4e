"""
Column layouts, line repair, finite-difference integration and RINEX
field formatting used by the Compact RINEX (Hatanaka) decompressor in
`crinex.py`.

Reference:
    Hatanaka, Y. (2008), A Compression Format and Tools for GNSS
    Observation Data, Bulletin of the Geospatial Information Authority
    of Japan, 55, 21-30.
"""

from dataclasses import dataclass, field
import re
from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

MAX_DIFF_ORDER = 5
CLOCK_FRACTION_DIGITS = 8
OBSERVATION_FRACTION_DIGITS = 5
ESCAPE_CHAR = "&"

# RINEX 2 epoch records carry 12 satellites on the first line and on each
# continuation line, and 5 observation fields per line
RINEX2_EPOCH_WIDTH = 68
RINEX2_SATS_PER_LINE = 12
RINEX2_CONTINUATION_INDENT = 32
RINEX2_OBS_PER_LINE = 5
# RINEX 3/4 epoch records: clock offset starts at column 42
RINEX3_EPOCH_WIDTH = 41

OBSERVATION_FIELD_WIDTH = 14
OBSERVATION_UPPER_MAX = 99999999
OBSERVATION_UPPER_MIN = -9999999
CLOCK_INTEGER_WIDTH = 2

_INTEGER_PATTERN = re.compile(r"-?\d+")


class CrinexError(ValueError):
    """Fatal error; the whole file is abandoned."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line_number = line_number

    def __str__(self) -> str:
        if self.line_number is None:
            return self.message
        return f"after reading line {self.line_number}: {self.message}"


class EpochSkipped(Exception):
    """Structural problem confined to the current epoch."""


@dataclass(frozen=True)
class CrinexLayout:
    crinex_version: int
    rinex_version: int
    crinex_epoch_marker: str
    rinex_epoch_marker: str
    year_month_index: int  # blank between year and month
    event_flag_index: int
    num_sats_index: int
    sat_list_index: int
    clock_shift: int  # clock digits printed above the 8-digit lower part

    @property
    def epoch_anchor_indices(self) -> Tuple[int, int, int]:
        # two blanks before the event flag, then the event flag digit
        i = self.year_month_index + 23
        return i, i + 1, i + 2

    @staticmethod
    def for_versions(crinex_version: int, rinex_version: int) -> "CrinexLayout":
        if rinex_version == 2:
            return CrinexLayout(
                crinex_version=crinex_version,
                rinex_version=rinex_version,
                crinex_epoch_marker="&",
                rinex_epoch_marker=" ",
                year_month_index=3,
                event_flag_index=28,
                num_sats_index=29,
                sat_list_index=32,
                clock_shift=1,
            )
        if rinex_version in (3, 4):
            return CrinexLayout(
                crinex_version=crinex_version,
                rinex_version=rinex_version,
                crinex_epoch_marker=">",
                rinex_epoch_marker=">",
                year_month_index=6,
                event_flag_index=31,
                num_sats_index=32,
                sat_list_index=41,
                clock_shift=4,
            )
        raise CrinexError(f"unsupported RINEX version: {rinex_version}")


def repair_line(previous: str, diff: str) -> str:
    """
    Reconstructs a line from its difference against the previous fully
    expanded line of the same kind.

    A blank in `diff` keeps the character of `previous`, `&` writes a
    blank, anything else overwrites.  Characters of `diff` past the end of
    `previous` are appended (with `&` written as a blank).
    """
    chars = list(previous)
    if len(chars) < len(diff):
        chars.extend(diff[len(chars):])
    for i, c in enumerate(diff):
        if c == " ":
            continue
        chars[i] = " " if c == ESCAPE_CHAR else c
    return "".join(chars)


def _truncated_divmod(value: int, unit: int) -> Tuple[int, int]:
    # quotient rounds toward zero; remainder keeps the sign of `value`
    quotient = abs(value) // unit
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * unit


def split_literal(token: str, fraction_digits: int) -> Tuple[int, int]:
    """
    Splits an integer literal into `(upper, lower)` where `lower` holds the
    last `fraction_digits` digits with the sign of the whole literal.
    """
    if not _INTEGER_PATTERN.fullmatch(token):
        raise EpochSkipped(f"invalid numeric field: {token!r}")
    digits = token[1:] if token.startswith("-") else token
    if len(digits) <= fraction_digits:
        return 0, int(token)
    upper = int(token[:-fraction_digits])
    lower = int(token[-fraction_digits:])
    if upper < 0:
        lower = -lower
    return upper, lower


@dataclass
class DifferenceState:
    """
    Accumulators of one field (the clock, or one observation type of one
    satellite) for difference orders 0..MAX_DIFF_ORDER.

    Each accumulator is an `(upper, lower)` pair; `lower` holds the last
    `fraction_digits` digits so that neither part overflows 64 bits over a
    long arc.  `arc_order < 0` marks a field that is blank this epoch.
    """

    fraction_digits: int
    arc_order: int = -1
    order: int = -1
    upper: NDArray[np.int64] = field(
        default_factory=lambda: np.zeros(MAX_DIFF_ORDER + 1, dtype=np.int64)
    )
    lower: NDArray[np.int64] = field(
        default_factory=lambda: np.zeros(MAX_DIFF_ORDER + 1, dtype=np.int64)
    )

    @property
    def is_blank(self) -> bool:
        return self.arc_order < 0

    @property
    def unit(self) -> int:
        return 10**self.fraction_digits

    @property
    def value(self) -> Tuple[int, int]:
        return int(self.upper[self.order]), int(self.lower[self.order])

    @staticmethod
    def blank(fraction_digits: int) -> "DifferenceState":
        return DifferenceState(fraction_digits)

    def _add(self, index: int, a: Tuple[int, int], b: Tuple[int, int]) -> None:
        carry, lower = _truncated_divmod(a[1] + b[1], self.unit)
        self.upper[index] = a[0] + b[0] + carry
        self.lower[index] = lower

    def _normalize(self, index: int) -> None:
        upper, lower = int(self.upper[index]), int(self.lower[index])
        if upper < 0 and lower > 0:
            self.upper[index] = upper + 1
            self.lower[index] = lower - self.unit
        elif upper > 0 and lower < 0:
            self.upper[index] = upper - 1
            self.lower[index] = lower + self.unit

    def integrate(self, previous: Optional["DifferenceState"]) -> None:
        """
        Recovers the absolute value from the literal in accumulator 0.

        While the arc is ramping up (`order < arc_order`) each sample raises
        the order by one and adds the previous epoch's accumulator of the
        same index; afterwards the previous accumulator one order higher is
        added instead.
        """
        if self.order < self.arc_order:
            self.order += 1
            offset = 0
        else:
            offset = 1
        for j in range(self.order):
            assert previous is not None
            k = j + offset
            self._add(
                j + 1,
                (int(self.upper[j]), int(self.lower[j])),
                (int(previous.upper[k]), int(previous.lower[k])),
            )
        for j in range(self.order + 1):
            self._normalize(j)


def decode_field(
    token: str,
    previous: Optional[DifferenceState],
    fraction_digits: int,
    max_arc_order: int = MAX_DIFF_ORDER,
) -> DifferenceState:
    """
    Decodes one non-blank field token.

    `token` is either `<arc order>&<value>`, opening a new arc, or a bare
    difference continuing the arc of `previous`.  A continuing token
    without a non-blank `previous` raises `EpochSkipped`.
    """
    if len(token) >= 2 and token[1] == ESCAPE_CHAR:
        if not token[0].isdigit():
            raise EpochSkipped(f"invalid arc order in field: {token!r}")
        arc_order = int(token[0])
        if arc_order > max_arc_order:
            raise CrinexError(f"exceed maximum order of difference ({max_arc_order})")
        state = DifferenceState(fraction_digits, arc_order=arc_order)
        previous = None
        token = token[2:]
    else:
        if previous is None or previous.is_blank:
            raise EpochSkipped("field continues an arc that has no previous value")
        state = DifferenceState(
            fraction_digits, arc_order=previous.arc_order, order=previous.order
        )
    state.upper[0], state.lower[0] = split_literal(token, fraction_digits)
    state.integrate(previous)
    return state


def format_clock(upper: int, lower: int, shift: int) -> str:
    """
    Formats a receiver clock offset given as `upper` (the leading digits,
    the last `shift` of which are fractional) and an 8-digit `lower`.

    Leading zeros of the integer part are dropped, e.g. `  .012345678`
    (RINEX 2, shift 1) or `  .000123456789` (RINEX 3, shift 4).
    """
    if upper < 0 and lower > 0:
        upper += 1
        lower -= 10**CLOCK_FRACTION_DIGITS
    elif upper > 0 and lower < 0:
        upper -= 1
        lower += 10**CLOCK_FRACTION_DIGITS
    sign = "-" if upper < 0 or lower < 0 else ""
    digits = str(abs(upper)).zfill(shift)
    integer_part = sign + digits[:-shift].lstrip("0")
    if len(integer_part) > CLOCK_INTEGER_WIDTH:
        raise CrinexError("clock offset out of range")
    return f"{integer_part:>{CLOCK_INTEGER_WIDTH}}.{digits[-shift:]}{abs(lower):08d}"


def format_observation(upper: int, lower: int) -> str:
    """
    Formats an observation value with three decimals into 14 columns.

    Values below one drop the leading zero (`.123`, `-.123`), matching
    the reference decompressor.
    """
    if upper != 0:
        if upper > OBSERVATION_UPPER_MAX or upper < OBSERVATION_UPPER_MIN:
            raise CrinexError("observation data out of range")
        text = f"{upper:8d}{abs(lower):05d}"
        return f"{text[:10]}.{text[10:]}"
    digits = f"{abs(lower):05d}"
    sign = "-" if lower < 0 else ""
    return f"{sign + digits[:2].lstrip('0')}.{digits[2:]}".rjust(OBSERVATION_FIELD_WIDTH)


def format_observation_record(
    prn: str,
    fields: List[DifferenceState],
    flags: str,
    layout: CrinexLayout,
) -> Tuple[List[str], str]:
    """
    Formats the observations of one satellite.

    Returns the output lines and the flags as they stand after printing
    (CRINEX 1 blanks the flags of blank fields).
    """
    flag_chars = list(flags.ljust(2 * len(fields)))
    lines = []
    text = prn if layout.rinex_version >= 3 else ""
    for i, state in enumerate(fields):
        flag_pair = flag_chars[2 * i] + flag_chars[2 * i + 1]
        if not state.is_blank:
            upper, lower = state.value
            text += format_observation(upper, lower) + flag_pair
        elif layout.crinex_version == 1:
            text += " " * (OBSERVATION_FIELD_WIDTH + 2)
            flag_chars[2 * i] = flag_chars[2 * i + 1] = " "
        else:
            text += " " * OBSERVATION_FIELD_WIDTH + flag_pair
        if i + 1 == len(fields) or (
            layout.rinex_version == 2 and (i + 1) % RINEX2_OBS_PER_LINE == 0
        ):
            lines.append(text.rstrip())
            text = ""
    return lines, "".join(flag_chars)


def format_epoch_lines(
    epoch_line: str, num_sats: int, clock_text: Optional[str], layout: CrinexLayout
) -> List[str]:
    """
    Formats the epoch record (time, flag, satellite list and clock) from
    the fully repaired CRINEX epoch line.

    Without a clock the first line is right-trimmed for every RINEX
    version; CRX2RNX prints RINEX 2 lines as the first 68 columns
    untrimmed, which differs only in trailing blanks.  With a clock the
    line is padded to the clock column (68 for RINEX 2, 41 for RINEX 3/4).
    """
    if layout.rinex_version == 2:
        width = RINEX2_EPOCH_WIDTH
    else:
        width = RINEX3_EPOCH_WIDTH
    if clock_text is not None:
        lines = [f"{epoch_line:<{width}.{width}}{clock_text}"]
    else:
        lines = [epoch_line[:width].rstrip()]
    if layout.rinex_version == 2:
        block = 3 * RINEX2_SATS_PER_LINE
        start = RINEX2_EPOCH_WIDTH
        for _ in range(RINEX2_SATS_PER_LINE, num_sats, RINEX2_SATS_PER_LINE):
            sats = epoch_line[start:start + block]
            lines.append((" " * RINEX2_CONTINUATION_INDENT + sats).rstrip())
            start += block
    return lines


def format_comment(message: str, rinex_version: int) -> List[str]:
    """Formats a one-line comment event record (event flag 4)."""
    if rinex_version == 2:
        epoch_line = f"{4:29d}{1:3d}"
    else:
        epoch_line = f">{4:31d}{1:3d}"
    return [epoch_line, f"{message:<60}COMMENT"]
