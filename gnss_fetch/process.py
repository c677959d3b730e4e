"""
Fetch jobs: one product (optionally for one site) at one epoch, tried
against an ordered list of archive sources, then decompressed and, for
Compact RINEX, expanded to RINEX.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import os
from typing import Dict, List, Optional
import zlib

import requests

from gnss_fetch.config import FetchConfig, ProductSource
from gnss_fetch.misc.data_utils import (
    DownloadError,
    create_session,
    decompress,
    download,
    format_filepath,
)
from gnss_fetch.rinex_io.crinex import (
    DecoderOptions,
    decompress_crinex_file,
    is_crinex_filepath,
)
from gnss_fetch.rinex_io.crinex_utils import CrinexError
from gnss_fetch.time.gpst import GPS_EPOCH

JOB_DONE = "done"
JOB_SKIPPED = "skipped"
JOB_FAILED = "failed"

COMPRESSED_EXTENSIONS = (".gz", ".z")

# a corrupt download surfaces as any of these while it is being unpacked
PREPARE_ERRORS = (OSError, EOFError, zlib.error, ValueError, CrinexError)


@dataclass
class Job:
    type: str
    time: datetime
    site: str
    path: str  # final output path
    uncompress: bool = True
    force: bool = False


@dataclass
class JobResult:
    job: Job
    status: str
    error: Optional[str] = None
    temporary: bool = False
    attempts: int = 1


def align_time(t: datetime, interval: int) -> datetime:
    """Rounds `t` down to a multiple of `interval` seconds since the GPS epoch."""
    seconds = int((t - GPS_EPOCH).total_seconds())
    return GPS_EPOCH + timedelta(seconds=seconds - seconds % interval)


def generate_jobs(config: FetchConfig) -> List[Job]:
    jobs: List[Job] = []
    for task in config.tasks:
        interval = config.sources[task.type].interval
        t = align_time(config.start_time - timedelta(seconds=task.backward), interval)
        end_time = config.end_time + timedelta(seconds=task.forward)
        sites = task.targets if task.targets else [""]
        while t < end_time:
            for site in sites:
                path = format_filepath(task.path, t, site=site)
                jobs.append(
                    Job(
                        type=task.type,
                        time=t,
                        site=site,
                        path=os.path.join(config.data_dir, path),
                        uncompress=task.uncompress,
                        force=task.force,
                    )
                )
            t += timedelta(seconds=interval)
    return jobs


def _remove(*filepaths: str) -> None:
    for filepath in filepaths:
        if filepath and os.path.exists(filepath):
            os.remove(filepath)


def run_job(
    job: Job,
    product_source: ProductSource,
    options: Optional[DecoderOptions] = None,
    session: Optional[requests.Session] = None,
) -> JobResult:
    """
    Runs one job, trying each source in order until one yields the
    output file.
    """
    if os.path.exists(job.path) and not job.force:
        return JobResult(job, JOB_SKIPPED)
    output_dir = os.path.dirname(job.path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    if session is None:
        session = create_session()

    error: Optional[str] = None
    temporary = False
    for source in product_source.sources:
        url = format_filepath(source.url, job.time, site=job.site)
        filepath = os.path.join(output_dir, os.path.basename(url))
        try:
            download(url, filepath, source.username, source.password, session=session)
        except DownloadError as e:
            logging.info(f"{url}: {e}")
            error = str(e)
            temporary = temporary or e.temporary
            _remove(filepath)
            continue

        intermediate = filepath
        try:
            if job.uncompress and filepath.lower().endswith(COMPRESSED_EXTENSIONS):
                intermediate = decompress(filepath)
                _remove(filepath)
            if job.uncompress and is_crinex_filepath(intermediate):
                rinex_filepath = decompress_crinex_file(intermediate, options=options)
                _remove(intermediate)
                intermediate = rinex_filepath
            os.replace(intermediate, job.path)
        except PREPARE_ERRORS as e:
            logging.warning(f"{url}: failed to prepare {job.path}: {e}")
            error = str(e)
            _remove(filepath, intermediate)
            continue
        return JobResult(job, JOB_DONE)

    if error is None:
        error = f"no source for {job.type}"
    return JobResult(job, JOB_FAILED, error=error, temporary=temporary)


def process_jobs(
    jobs: List[Job],
    sources: Dict[str, ProductSource],
    num_workers: int = 1,
    retry_num: int = 0,
    options: Optional[DecoderOptions] = None,
) -> List[JobResult]:
    """
    Runs `jobs` on a thread pool.  Jobs failing for a temporary reason are
    run again, up to `retry_num` more times.
    """
    results: Dict[int, JobResult] = {}
    pending = list(range(len(jobs)))
    attempt = 0
    while pending and attempt <= retry_num:
        attempt += 1
        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            futures = {
                executor.submit(run_job, jobs[i], sources[jobs[i].type], options): i
                for i in pending
            }
            for future in as_completed(futures):
                i = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    result = JobResult(jobs[i], JOB_FAILED, error=str(e))
                result.attempts = attempt
                results[i] = result
                logging.info(f"[{result.status}] {jobs[i].type} {jobs[i].time} {jobs[i].site} -> {jobs[i].path}")
        pending = [
            i for i in pending if results[i].status == JOB_FAILED and results[i].temporary
        ]
    return [results[i] for i in range(len(jobs))]
