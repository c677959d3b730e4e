"""
Command-line entry point.

Examples:

# expand a Compact RINEX file next to the input (algo0150.24d -> algo0150.24o)
gnss-fetch crx2rnx algo0150.24d

# expand with the stricter behaviour of older CRX2RNX releases
gnss-fetch crx2rnx ALGO00CAN_R_20240150000_01D_30S_MO.crx --legacy -o out.rnx

# run the downloads described by a JSON config
gnss-fetch fetch config.json
"""

import argparse
from dataclasses import replace
import logging
import os
import sys
from typing import List, Optional

from gnss_fetch.config import load_config
from gnss_fetch.process import JOB_FAILED, generate_jobs, process_jobs
from gnss_fetch.rinex_io.crinex import DecoderOptions, decompress_crinex_file
from gnss_fetch.rinex_io.crinex_utils import CrinexError

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(level: str, log_file: Optional[str] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gnss-fetch", description="fetch and prepare GNSS observation files")
    p.add_argument("--log-level", help="logging level", default="info", choices=["debug", "info", "warning", "error"])
    p.add_argument("--log-file", help="also write log messages to this file")
    subparsers = p.add_subparsers(dest="command", required=True)

    crx = subparsers.add_parser("crx2rnx", help="decompress a Compact RINEX (Hatanaka) file")
    crx.add_argument("input", help="CRINEX file (.??d, .??D, .crx or .CRX)")
    crx.add_argument("-o", "--output", help="output RINEX file (default: derived from the input extension)")
    crx.add_argument("--legacy", help="behave like older CRX2RNX releases", action="store_true")
    crx.add_argument("--strict-eof", help="fail on input ending in the middle of an epoch", action="store_true")

    fetch = subparsers.add_parser("fetch", help="download products described by a JSON config file")
    fetch.add_argument("config", help="path to the JSON config file")
    fetch.add_argument("--legacy", help="decompress CRINEX like older CRX2RNX releases", action="store_true")
    return p


def _decoder_options(P: argparse.Namespace) -> DecoderOptions:
    options = DecoderOptions.legacy() if P.legacy else DecoderOptions.current()
    if getattr(P, "strict_eof", False):
        options = replace(options, allow_truncated_input=False)
    return options


def main(argv: Optional[List[str]] = None) -> int:
    P = build_parser().parse_args(argv)

    if P.command == "crx2rnx":
        configure_logging(P.log_level, P.log_file)
        try:
            output_filepath = decompress_crinex_file(P.input, P.output, _decoder_options(P))
        except (CrinexError, ValueError, OSError) as e:
            logging.error(f"{P.input}: {e}")
            return 1
        print(output_filepath)
        return 0

    try:
        config = load_config(P.config)
    except (ValueError, OSError) as e:
        configure_logging(P.log_level, P.log_file)
        logging.error(f"{P.config}: {e}")
        return 1
    configure_logging(P.log_level, P.log_file or config.log_file)
    jobs = generate_jobs(config)
    logging.info(f"{len(jobs)} job(s) from {config.start_time} to {config.end_time}")
    results = process_jobs(jobs, config.sources, config.worker_num, config.retry_num, _decoder_options(P))
    num_failed = sum(1 for r in results if r.status == JOB_FAILED)
    for r in results:
        if r.status == JOB_FAILED:
            logging.warning(f"failed: {r.job.path} ({r.error})")
    logging.info(f"{len(results) - num_failed} of {len(results)} job(s) succeeded")
    return 1 if num_failed else 0


if __name__ == "__main__":
    sys.exit(main())
