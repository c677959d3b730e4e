from typing import List

from pytest import fixture


def header_line(content: str, label: str) -> str:
    return f"{content:<60}{label}"


CRX3_VERSION_LINE = header_line(f"{'3.0':<20}COMPACT RINEX FORMAT", "CRINEX VERS   / TYPE")
CRX1_VERSION_LINE = header_line(f"{'1.0':<20}COMPACT RINEX FORMAT", "CRINEX VERS   / TYPE")
CRX_PROG_LINE = header_line(f"{'RNX2CRX ver.4.1.0':<40}15-Jan-24 01:00", "CRINEX PROG / DATE")

RNX3_HEADER = [
    header_line("     3.04           OBSERVATION DATA    M", "RINEX VERSION / TYPE"),
    header_line("TEST", "MARKER NAME"),
    header_line("G    2 C1C L1C", "SYS / # / OBS TYPES"),
    header_line("E    1 C1C", "SYS / # / OBS TYPES"),
    header_line("", "END OF HEADER"),
]

# RINEX 3.04, satellites G01 G05 / G01 G05 E11 / G05 E11 / G01 G05 E11
CRX3_EPOCHS = [
    [
        "> 2024 01 15 00 00  0.0000000  0  2      G01G05",
        "",
        "3&20000000123 3&105000000456    7",
        "3&21000000500",
    ],
    [
        " " * 19 + "3" + " " * 14 + "3" + " " * 12 + "E11",
        "",
        "100100 525500",
        "49500",
        "3&23000000000",
    ],
    [
        " " * 17 + "1" + " " + "&" + " " * 14 + "2" + " " * 8 + "5E11&&&",
        "1&123456789",
        "500 3&110000000789   16",
        "-12345",
    ],
    [
        " " * 19 + "3" + " " * 14 + "3" + " " * 8 + "1G05E11",
        "1000",
        "3&20000500000 3&105002000000",
        "-500 1000   &",
        "0",
    ],
]

RNX3_EPOCHS = [
    [
        "> 2024 01 15 00 00  0.0000000  0  2",
        "G01  20000000.123   105000000.456 7",
        "G05  21000000.500",
    ],
    [
        "> 2024 01 15 00 00 30.0000000  0  3",
        "G01  20000100.223   105000525.956 7",
        "G05  21000050.000",
        "E11  23000000.000",
    ],
    [
        "> 2024 01 15 00 01  0.0000000  0  2" + " " * 6 + "  .000123456789",
        "G05  21000100.000   110000000.78916",
        "E11  22999987.655",
    ],
    [
        "> 2024 01 15 00 01 30.0000000  0  3" + " " * 6 + "  .000123457789",
        "G01  20000500.000   105002000.000",
        "G05  21000150.000   110000001.789 6",
        "E11  22999975.310",
    ],
]

RNX2_HEADER = [
    header_line("     2.11           OBSERVATION DATA    G (GPS)", "RINEX VERSION / TYPE"),
    header_line("TEST", "MARKER NAME"),
    header_line("     6    C1    L1    L2    P2    S1    S2", "# / TYPES OF OBSERV"),
    header_line("", "END OF HEADER"),
]

CRX1_EPOCHS = [
    [
        "&24  1 15  0  0  0.0000000  0  2G01G05",
        "2&12345678",
        "3&20000000123 3&105000000456 3&81818181818  3&45000 3&250    7",
        "3&21000000500",
    ],
    [
        " " * 16 + "3",
        "100",
        "100100 525500 1000  250 -250",
        "49500",
    ],
]

RNX2_EPOCHS = [
    [
        f"{' 24  1 15  0  0  0.0000000  0  2G01G05':<68}" + "  .012345678",
        "  20000000.123   105000000.456 7  81818181.818" + " " * 18 + "        45.000",
        "          .250",
        "  21000000.500",
        "",
    ],
    [
        f"{' 24  1 15  0  0 30.0000000  0  2G01G05':<68}" + "  .012345778",
        "  20000100.223   105000525.956 7  81818182.818" + " " * 18 + "        45.250",
        "          .000",
        "  21000050.000",
        "",
    ],
]


def join_lines(lines: List[str]) -> str:
    return "".join(line + "\n" for line in lines)


def flatten(epochs: List[List[str]]) -> List[str]:
    return [line for epoch in epochs for line in epoch]


@fixture
def crx3_header() -> List[str]:
    return [CRX3_VERSION_LINE, CRX_PROG_LINE] + RNX3_HEADER


@fixture
def rnx3_header() -> List[str]:
    return list(RNX3_HEADER)


@fixture
def crx3_epochs() -> List[List[str]]:
    return [list(epoch) for epoch in CRX3_EPOCHS]


@fixture
def rnx3_epochs() -> List[List[str]]:
    return [list(epoch) for epoch in RNX3_EPOCHS]


@fixture
def crx3_text(crx3_header, crx3_epochs) -> str:
    return join_lines(crx3_header + flatten(crx3_epochs))


@fixture
def rnx3_text(rnx3_header, rnx3_epochs) -> str:
    return join_lines(rnx3_header + flatten(rnx3_epochs))


@fixture
def crx1_header() -> List[str]:
    return [CRX1_VERSION_LINE, CRX_PROG_LINE] + RNX2_HEADER


@fixture
def crx1_text(crx1_header) -> str:
    return join_lines(crx1_header + flatten(CRX1_EPOCHS))


@fixture
def rnx2_text() -> str:
    return join_lines(RNX2_HEADER + flatten(RNX2_EPOCHS))
