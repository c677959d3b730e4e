"""
Compact RINEX (Hatanaka) decompression.

Reconstructs a RINEX 2, 3 or 4 observation file from its CRINEX 1 or 3
form, reproducing the output of the reference CRX2RNX tool line for line.
The decoder streams: only the previous epoch is kept in memory.

Example:

    from gnss_fetch.rinex_io.crinex import decompress_crinex_file
    rinex_filepath = decompress_crinex_file("algo0150.24d")  # -> algo0150.24o
"""

from dataclasses import dataclass, field
import io
import logging
import os
import re
from typing import Dict, Iterable, Iterator, List, Optional, TextIO, Tuple

from gnss_fetch.rinex_io.crinex_utils import (
    CLOCK_FRACTION_DIGITS,
    ESCAPE_CHAR,
    MAX_DIFF_ORDER,
    OBSERVATION_FRACTION_DIGITS,
    CrinexError,
    CrinexLayout,
    DifferenceState,
    EpochSkipped,
    decode_field,
    format_clock,
    format_comment,
    format_epoch_lines,
    format_observation_record,
    repair_line,
)

LABEL_CRINEX_VERS_TYPE = "CRINEX VERS   / TYPE"
LABEL_CRINEX_PROG_DATE = "CRINEX PROG / DATE"
LABEL_RINEX_VERSION_TYPE = "RINEX VERSION / TYPE"
LABEL_RINEX2_OBS_TYPES = "# / TYPES OF OBSERV"
LABEL_RINEX3_OBS_TYPES = "SYS / # / OBS TYPES"
LABEL_END_OF_HEADER = "END OF HEADER"

HEADER_LABEL_COLUMN = 60

TRUNCATED_SAT_LIST_COMMENT = "  *** Truncated satellite list, epoch skipped ***"

_LEADING_INT_PATTERN = re.compile(r"\s*(-?\d+)")


@dataclass(frozen=True)
class DecoderOptions:
    """
    Behaviour switches that differ between revisions of the reference
    decompressor.

    allow_truncated_input -- end the decode quietly when the input stops
        in the middle of an epoch (otherwise raise `CrinexError`)
    max_arc_order -- highest difference order a field may declare
    crinex_versions -- accepted `CRINEX VERS   / TYPE` values
    rinex_versions -- accepted RINEX major versions
    """

    allow_truncated_input: bool = True
    max_arc_order: int = MAX_DIFF_ORDER
    crinex_versions: Tuple[str, ...] = ("1.0", "3.0", "3.1")
    rinex_versions: Tuple[int, ...] = (2, 3, 4)

    @classmethod
    def current(cls) -> "DecoderOptions":
        return cls()

    @classmethod
    def legacy(cls) -> "DecoderOptions":
        return cls(
            allow_truncated_input=False,
            max_arc_order=4,
            crinex_versions=("1.0", "3.0"),
            rinex_versions=(2, 3),
        )


def _parse_leading_int(text: str) -> Optional[int]:
    match = _LEADING_INT_PATTERN.match(text)
    if match is None:
        return None
    return int(match.group(1))


@dataclass
class ObsTypeTable:
    """
    Number of observation types per GNSS system letter (RINEX 3/4), or a
    single count stored under the empty key (RINEX 2).
    """

    rinex_version: int
    counts: Dict[str, int] = field(default_factory=dict)

    def update(self, line: str) -> None:
        """Reads the count from the first line of an observation types record."""
        label = line[HEADER_LABEL_COLUMN:]
        if self.rinex_version == 2:
            if label != LABEL_RINEX2_OBS_TYPES or line[5:6] in ("", " "):
                return
            key, count = "", _parse_leading_int(line[:6])
        else:
            if label != LABEL_RINEX3_OBS_TYPES or line[0] == " ":
                return
            key, count = line[0], _parse_leading_int(line[3:6])
        if count is None or count <= 0:
            raise CrinexError(f"invalid number of observation types: {line[:6].strip()!r}")
        self.counts[key] = count

    def num_types(self, prn: str) -> int:
        if self.rinex_version == 2:
            return self.counts[""]
        if prn[0] not in self.counts:
            raise CrinexError(f"satellite system not defined in the header: {prn!r}")
        return self.counts[prn[0]]


@dataclass
class CrinexHeader:
    crinex_version: str
    rinex_version: int
    lines: List[str]  # RINEX header lines, CRINEX lines removed
    obs_types: ObsTypeTable

    @property
    def layout(self) -> CrinexLayout:
        return CrinexLayout.for_versions(int(self.crinex_version[0]), self.rinex_version)


class _LineReader:
    """Reads right-trimmed lines and counts them for error messages."""

    def __init__(self, input: Iterable[str]) -> None:
        self._lines: Iterator[str] = iter(input)
        self.line_number = 0

    def readline(self) -> Optional[str]:
        line = next(self._lines, None)
        if line is None:
            return None
        self.line_number += 1
        return line.rstrip("\r\n").rstrip(" \t")


def parse_crinex_header(reader: _LineReader, options: DecoderOptions) -> CrinexHeader:
    crinex_version: Optional[str] = None
    rinex_version: Optional[int] = None
    obs_types: Optional[ObsTypeTable] = None
    lines: List[str] = []
    while True:
        line = reader.readline()
        if line is None:
            raise CrinexError(f"no `{LABEL_END_OF_HEADER}`", reader.line_number)
        if len(line) <= HEADER_LABEL_COLUMN:
            raise CrinexError(f"header line truncated: {line!r}", reader.line_number)
        label = line[HEADER_LABEL_COLUMN:]
        if label == LABEL_CRINEX_VERS_TYPE:
            crinex_version = line[:3]
            if crinex_version not in options.crinex_versions:
                raise CrinexError(
                    f"unsupported CRINEX version {crinex_version!r}; "
                    f"expected one of {', '.join(options.crinex_versions)}",
                    reader.line_number,
                )
            continue
        if label == LABEL_CRINEX_PROG_DATE:
            continue
        if crinex_version is None:
            raise CrinexError(
                f"invalid CRINEX file; expected `{LABEL_CRINEX_VERS_TYPE}`, got {label!r}",
                reader.line_number,
            )
        if label == LABEL_RINEX_VERSION_TYPE:
            version_char = line[5]
            if not version_char.isdigit() or int(version_char) not in options.rinex_versions:
                raise CrinexError(
                    f"unsupported RINEX version {line[:9].strip()!r}", reader.line_number
                )
            rinex_version = int(version_char)
            obs_types = ObsTypeTable(rinex_version)
        elif label in (LABEL_RINEX2_OBS_TYPES, LABEL_RINEX3_OBS_TYPES):
            if obs_types is None:
                raise CrinexError(
                    f"`{label}` before `{LABEL_RINEX_VERSION_TYPE}`", reader.line_number
                )
            try:
                obs_types.update(line)
            except CrinexError as e:
                raise CrinexError(e.message, reader.line_number) from e
        lines.append(line)
        if label == LABEL_END_OF_HEADER:
            break
    if rinex_version is None or obs_types is None:
        raise CrinexError(f"no `{LABEL_RINEX_VERSION_TYPE}`", reader.line_number)
    if rinex_version == 2 and "" not in obs_types.counts:
        raise CrinexError(f"no `{LABEL_RINEX2_OBS_TYPES}`", reader.line_number)
    return CrinexHeader(crinex_version, rinex_version, lines, obs_types)


@dataclass
class SatelliteState:
    fields: List[DifferenceState]
    flags: str  # two characters (LLI, signal strength) per field


@dataclass
class EpochSnapshot:
    """State carried from one emitted epoch to the next."""

    epoch_line: str = ""
    satellites: Dict[str, SatelliteState] = field(default_factory=dict)
    clock: DifferenceState = field(
        default_factory=lambda: DifferenceState.blank(CLOCK_FRACTION_DIGITS)
    )
    picoseconds: str = ""


class _EndOfInput(Exception):
    pass


class CrinexDecoder:
    """
    Decodes the body of a CRINEX file epoch by epoch.

    A structural problem confined to one epoch (bad anchor columns, a
    field continuing an arc that does not exist) drops that epoch and the
    decoder skips lines until the next initialization epoch.  Everything
    else raises `CrinexError`.
    """

    def __init__(self, header: CrinexHeader, options: Optional[DecoderOptions] = None):
        self.header = header
        self.options = options if options is not None else DecoderOptions.current()
        self.layout = header.layout
        self.obs_types = header.obs_types
        self.snapshot = EpochSnapshot()
        self.must_init = True
        self.skipped_epochs = 0

    def decode(self, reader: _LineReader, output: TextIO) -> None:
        warned_resync = False
        while True:
            line = reader.readline()
            if line is None:
                return
            if self.layout.crinex_version == 3 and line.startswith(ESCAPE_CHAR):
                continue
            if line.startswith(self.layout.crinex_epoch_marker):
                line = self.layout.rinex_epoch_marker + line[1:]
                flag_index = self.layout.event_flag_index
                if len(line) > flag_index and line[flag_index] not in "01":
                    self._copy_event_record(line, reader, output)
                    continue
                self.snapshot.epoch_line = ""
                self.snapshot.satellites = {}
                self.must_init = False
                warned_resync = False
            elif self.must_init:
                if not warned_resync:
                    logging.warning(
                        f"line {reader.line_number}: skipping lines until the next "
                        "initialization epoch"
                    )
                    warned_resync = True
                continue
            try:
                lines = self._decode_epoch(line, reader)
            except EpochSkipped as e:
                logging.warning(f"line {reader.line_number}: {e}; epoch skipped")
                self.skipped_epochs += 1
                self.snapshot = EpochSnapshot()
                self.must_init = True
                continue
            except _EndOfInput:
                if self.options.allow_truncated_input:
                    logging.warning(
                        f"input ends in the middle of an epoch after line {reader.line_number}"
                    )
                    return
                raise CrinexError("input ends in the middle of an epoch", reader.line_number)
            except CrinexError as e:
                if e.line_number is None:
                    e.line_number = reader.line_number
                raise
            for text in lines:
                output.write(text + "\n")

    def _copy_event_record(self, line: str, reader: _LineReader, output: TextIO) -> None:
        output.write(line + "\n")
        count = _parse_leading_int(line[self.layout.num_sats_index:]) or 0
        for _ in range(count):
            record_line = reader.readline()
            if record_line is None:
                break
            output.write(record_line + "\n")
            try:
                self.obs_types.update(record_line)
            except CrinexError as e:
                raise CrinexError(e.message, reader.line_number) from e
        self.must_init = True

    def _read_body_line(self, reader: _LineReader) -> str:
        line = reader.readline()
        if line is None:
            raise _EndOfInput()
        return line

    def _decode_epoch(self, diff_line: str, reader: _LineReader) -> List[str]:
        layout = self.layout
        previous = self.snapshot
        epoch_line = repair_line(previous.epoch_line, diff_line)
        i, j, k = layout.epoch_anchor_indices
        if (
            len(epoch_line) <= layout.num_sats_index
            or epoch_line[0] != layout.rinex_epoch_marker
            or epoch_line[i] != " "
            or epoch_line[j] != " "
            or not epoch_line[k].isdigit()
        ):
            raise EpochSkipped(f"invalid epoch line: {epoch_line!r}")
        num_sats = _parse_leading_int(epoch_line[layout.num_sats_index:])
        if num_sats is None or num_sats < 0:
            raise EpochSkipped(f"invalid number of satellites: {epoch_line!r}")
        sat_list = epoch_line[layout.sat_list_index:]
        if len(sat_list) < 3 * num_sats:
            self.snapshot = EpochSnapshot()
            self.must_init = True
            self.skipped_epochs += 1
            logging.warning(f"line {reader.line_number}: truncated satellite list; epoch skipped")
            return format_comment(TRUNCATED_SAT_LIST_COMMENT, layout.rinex_version)
        prns = [sat_list[3 * n:3 * n + 3] for n in range(num_sats)]
        num_types = [self.obs_types.num_types(prn) for prn in prns]

        clock, picoseconds = self._decode_clock_line(self._read_body_line(reader))

        satellites: Dict[str, SatelliteState] = {}
        for prn, n in zip(prns, num_types):
            line = self._read_body_line(reader)
            satellites[prn] = self._decode_observation_line(
                line, n, previous.satellites.get(prn)
            )

        if clock.is_blank:
            clock_text = None
        else:
            clock_text = format_clock(*clock.value, layout.clock_shift)
        lines = format_epoch_lines(epoch_line, num_sats, clock_text, layout)
        for prn in prns:
            state = satellites[prn]
            record_lines, state.flags = format_observation_record(
                prn, state.fields, state.flags, layout
            )
            lines.extend(record_lines)

        self.snapshot = EpochSnapshot(epoch_line, satellites, clock, picoseconds)
        return lines

    def _decode_clock_line(self, line: str) -> Tuple[DifferenceState, str]:
        token, _, picoseconds = line.partition(" ")
        picoseconds = repair_line(self.snapshot.picoseconds, picoseconds)
        if not token:
            return DifferenceState.blank(CLOCK_FRACTION_DIGITS), picoseconds
        clock = decode_field(
            token, self.snapshot.clock, CLOCK_FRACTION_DIGITS, self.options.max_arc_order
        )
        return clock, picoseconds

    def _decode_observation_line(
        self, line: str, num_types: int, previous: Optional[SatelliteState]
    ) -> SatelliteState:
        fields: List[DifferenceState] = []
        idx = 0
        for n in range(num_types):
            if idx >= len(line) or line[idx] == " ":
                fields.append(DifferenceState.blank(OBSERVATION_FRACTION_DIGITS))
                idx += 1
                continue
            end = line.find(" ", idx)
            if end < 0:
                end = len(line)
            previous_field = previous.fields[n] if previous is not None else None
            fields.append(
                decode_field(
                    line[idx:end],
                    previous_field,
                    OBSERVATION_FRACTION_DIGITS,
                    self.options.max_arc_order,
                )
            )
            idx = end + 1
        flag_diff = line[idx:]

        if previous is not None:
            flags = previous.flags
        elif self.layout.rinex_version == 2:
            flags = flag_diff.ljust(2 * num_types)
        else:
            flags = ""
        flags = repair_line(flags, flag_diff).ljust(2 * num_types)
        return SatelliteState(fields, flags)


def decompress_crinex(
    input: Iterable[str], output: TextIO, options: Optional[DecoderOptions] = None
) -> CrinexHeader:
    """
    Decompresses CRINEX text from `input` (a text stream or any iterable of
    lines) and writes RINEX text to `output`.
    """
    if options is None:
        options = DecoderOptions.current()
    reader = _LineReader(input)
    header = parse_crinex_header(reader, options)
    for line in header.lines:
        output.write(line + "\n")
    decoder = CrinexDecoder(header, options)
    decoder.decode(reader, output)
    if decoder.skipped_epochs > 0:
        logging.warning(f"{decoder.skipped_epochs} epoch(s) skipped")
    return header


def decompress_crinex_text(text: str, options: Optional[DecoderOptions] = None) -> str:
    output = io.StringIO()
    decompress_crinex(io.StringIO(text), output, options)
    return output.getvalue()


_CRINEX_EXTENSION_PATTERN = re.compile(r"\.(\d\d)([dD])$|\.(crx|CRX)$")


def is_crinex_filepath(filepath: str) -> bool:
    return _CRINEX_EXTENSION_PATTERN.search(filepath) is not None


def derive_rinex_filepath(filepath: str) -> str:
    """
    Output path for a CRINEX file: `.##d` -> `.##o`, `.##D` -> `.##O`,
    `.crx` -> `.rnx`, `.CRX` -> `.RNX`.
    """
    match = _CRINEX_EXTENSION_PATTERN.search(filepath)
    if match is None:
        raise ValueError(
            f"invalid CRINEX file extension: {filepath}; "
            "expected `.??d`, `.??D`, `.crx` or `.CRX`"
        )
    if match.group(1) is not None:
        suffix = "o" if match.group(2) == "d" else "O"
        return f"{filepath[:match.start()]}.{match.group(1)}{suffix}"
    suffix = "rnx" if match.group(3) == "crx" else "RNX"
    return f"{filepath[:match.start()]}.{suffix}"


def decompress_crinex_file(
    input_filepath: str,
    output_filepath: Optional[str] = None,
    options: Optional[DecoderOptions] = None,
) -> str:
    """
    Decompresses the CRINEX file at `input_filepath` and returns the path
    of the RINEX file written.  When `output_filepath` is omitted it is
    derived from the input extension (see `derive_rinex_filepath`).

    Nothing is left at `output_filepath` if decoding fails.
    """
    if not input_filepath:
        raise ValueError("input filepath is empty")
    if output_filepath is None:
        output_filepath = derive_rinex_filepath(input_filepath)
    output_dir = os.path.dirname(output_filepath)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)
    try:
        with open(input_filepath, "r", encoding="ascii", errors="replace") as f_in:
            with open(output_filepath, "w", encoding="ascii", errors="replace") as f_out:
                decompress_crinex(f_in, f_out, options)
    except Exception:
        if os.path.exists(output_filepath):
            os.remove(output_filepath)
        raise
    logging.info(f"decompressed {input_filepath} -> {output_filepath}")
    return output_filepath
