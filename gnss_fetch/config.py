"""
Configuration of fetch runs.

A run is described by a JSON file:

    {
        "start time": "2024-01-15 00:00:00",
        "end time": "2024-01-16 00:00:00",
        "worker num": 4,
        "retry num": 2,
        "log file": "logs/fetch.log",
        "data dir": "data",
        "IGS sites": ["ALGO00CAN", "NRC100CAN", "WTZR00DEU"],
        "sources": {
            "RNX_OBS_DAILY": {
                "interval": 86400,
                "sources": [
                    {"url": "https://cddis.nasa.gov/archive/gnss/data/daily/{yyyy}/{ddd}/{yy}d/{site}{ddd}0.{yy}d.Z"},
                    {"url": "ftp://igs.ign.fr/pub/igs/data/{yyyy}/{ddd}/{site}{ddd}0.{yy}d.Z"}
                ]
            }
        },
        "tasks": [
            {
                "type": "RNX_OBS_DAILY",
                "path": "rinex/{yyyy}/{ddd}/{site}{ddd}0.{yy}o",
                "targets": ["algo", "nrc1"],
                "backward": 0,
                "forward": 0,
                "uncompress": true
            }
        ]
    }

Relative paths are resolved against "data dir", which defaults to the
`DATA_DIR` environment variable.  Source credentials default to
`EARTHDATA_USERNAME` / `EARTHDATA_PASSWORD` for `cddis` URLs and to
anonymous login otherwise.

"IGS sites" is optional: a list of long site names, or the path of a
JSON site list (`{"data": [{"name": "ALGO00CAN"}, ...]}`).  When given,
targets are matched against it (`algo` becomes `ALGO00CAN`, unknown
sites are rejected) and `"targets": "all"` selects every listed site.
Without it, templates using `{SITE_LONG}` need 9-character targets.
"""

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

MIN_WORKER_NUM = 1
MAX_WORKER_NUM = 100

TIME_FORMATS = ["%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"]

ALL_SITES = "all"
LONG_SITE_NAME_LENGTH = 9
LONG_SITE_PLACEHOLDER = "{SITE_LONG}"


def get_data_dir() -> str:
    data_dir = os.getenv("DATA_DIR")
    if data_dir is None:
        logging.warning("DATA_DIR not set; using working directory")
        data_dir = "./"
    return data_dir


def get_earthdata_auth() -> Optional[Tuple[str, str]]:
    username = os.environ.get("EARTHDATA_USERNAME")
    password = os.environ.get("EARTHDATA_PASSWORD")
    if username is None or password is None:
        logging.warning("EARTHDATA_USERNAME and EARTHDATA_PASSWORD not set")
        return None
    return username, password


@dataclass
class Source:
    url: str  # template, see `format_filepath`
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class ProductSource:
    interval: int  # seconds between products
    sources: List[Source]  # tried in order


@dataclass
class Task:
    type: str
    path: str  # output path template
    targets: List[str] = field(default_factory=list)  # site names; empty for global products
    backward: int = 0  # seconds before the start time
    forward: int = 0  # seconds after the end time
    uncompress: bool = True
    force: bool = False


@dataclass
class FetchConfig:
    start_time: datetime
    end_time: datetime
    sources: Dict[str, ProductSource]
    tasks: List[Task]
    worker_num: int = 1
    retry_num: int = 0
    log_file: Optional[str] = None
    data_dir: str = "./"
    igs_sites: List[str] = field(default_factory=list)  # long site names, e.g. ALGO00CAN


def parse_time(value: str) -> datetime:
    for time_format in TIME_FORMATS:
        try:
            return datetime.strptime(value, time_format)
        except ValueError:
            continue
    raise ValueError(f"invalid time {value!r}; expected `YYYY-MM-DD hh:mm:ss`")


def _parse_source(entry: Dict[str, Any]) -> Source:
    url = entry.get("url")
    if not url:
        raise ValueError("source without `url`")
    if url.split("://")[0] not in ("http", "https", "ftp", "ftps"):
        raise ValueError(f"unsupported type of URL: {url}")
    username = entry.get("username")
    password = entry.get("password")
    if username is None and "cddis" in url.lower():
        auth = get_earthdata_auth()
        if auth is not None:
            username, password = auth
    return Source(url, username, password)


def load_igs_sites(filepath: str) -> List[str]:
    """
    Reads an IGS site list saved as JSON, `{"data": [{"name": "ALGO00CAN"}, ...]}`,
    and returns the long site names.
    """
    with open(filepath, "r") as f:
        data = json.load(f)
    names = [entry["name"] for entry in data.get("data", []) if entry.get("name")]
    if not names:
        raise ValueError(f"no sites in {filepath}")
    return names


def resolve_site(name: str, igs_sites: List[str]) -> str:
    """
    Returns the first long site name (e.g. `ALGO00CAN`) containing `name`
    (case-insensitive), so both `algo` and `ALGO00CAN` resolve.
    """
    key = name.upper()
    for site in igs_sites:
        if key in site.upper():
            return site.upper()
    raise ValueError(f"{name!r} is not a valid IGS site")


def _parse_igs_sites(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return load_igs_sites(value)
    sites = [str(site).upper() for site in value]
    if not sites:
        raise ValueError("`IGS sites` is empty")
    return sites


def _resolve_targets(targets: Any, igs_sites: List[str], templates: List[str], i: int) -> List[str]:
    if targets == ALL_SITES:
        if not igs_sites:
            raise ValueError(f'`targets` of task {i + 1} is "{ALL_SITES}" but no `IGS sites` are given')
        return list(igs_sites)
    if isinstance(targets, str):
        raise ValueError(f"invalid `targets` of task {i + 1}: {targets!r}")
    if igs_sites:
        return [resolve_site(site, igs_sites) for site in targets]
    targets = list(targets)
    if any(LONG_SITE_PLACEHOLDER in t for t in templates):
        short = [site for site in targets if len(site) < LONG_SITE_NAME_LENGTH]
        if short:
            raise ValueError(
                f"task {i + 1} uses {LONG_SITE_PLACEHOLDER} but {short} are not long site names; "
                "give them in full or provide `IGS sites`"
            )
    return targets


def parse_config(data: Dict[str, Any]) -> FetchConfig:
    for key in ("start time", "end time", "sources", "tasks"):
        if key not in data:
            raise ValueError(f"`{key}` is not specified in the config file")
    start_time = parse_time(data["start time"])
    end_time = parse_time(data["end time"])
    if end_time < start_time:
        start_time, end_time = end_time, start_time

    worker_num = int(data.get("worker num", 1))
    if worker_num < MIN_WORKER_NUM or worker_num > MAX_WORKER_NUM:
        raise ValueError(
            f"invalid `worker num` {worker_num}; must be in {MIN_WORKER_NUM}-{MAX_WORKER_NUM}"
        )
    retry_num = int(data.get("retry num", 0))
    if retry_num < 0:
        raise ValueError(f"invalid `retry num` {retry_num}")

    sources: Dict[str, ProductSource] = {}
    for product_type, entry in data["sources"].items():
        interval = int(entry.get("interval", 0))
        if interval <= 0:
            raise ValueError(f"invalid `interval` for {product_type!r}")
        sources[product_type] = ProductSource(
            interval, [_parse_source(s) for s in entry.get("sources", [])]
        )

    igs_sites = _parse_igs_sites(data.get("IGS sites"))

    tasks: List[Task] = []
    for i, entry in enumerate(data["tasks"]):
        task = Task(
            type=entry.get("type", ""),
            path=entry.get("path", ""),
            backward=int(entry.get("backward", 0)),
            forward=int(entry.get("forward", 0)),
            uncompress=bool(entry.get("uncompress", True)),
            force=bool(entry.get("force", False)),
        )
        if task.type not in sources:
            raise ValueError(f"invalid `type` of task {i + 1}: {task.type!r}")
        templates = [task.path] + [s.url for s in sources[task.type].sources]
        task.targets = _resolve_targets(entry.get("targets", []), igs_sites, templates, i)
        if not task.path:
            raise ValueError(f"`path` is not specified for task {i + 1}")
        if task.backward < 0 or task.forward < 0:
            raise ValueError(f"invalid `backward` / `forward` of task {i + 1}")
        if any(t.type == task.type for t in tasks):
            raise ValueError(f"duplicated `type` of task {i + 1}: {task.type!r}")
        tasks.append(task)
    if not tasks:
        raise ValueError("`tasks` is empty")

    data_dir = data.get("data dir") or get_data_dir()
    log_file = data.get("log file") or None
    if log_file is not None and not os.path.isabs(log_file):
        log_file = os.path.join(data_dir, log_file)

    return FetchConfig(
        start_time=start_time,
        end_time=end_time,
        sources=sources,
        tasks=tasks,
        worker_num=worker_num,
        retry_num=retry_num,
        log_file=log_file,
        data_dir=data_dir,
        igs_sites=igs_sites,
    )


def load_config(filepath: str) -> FetchConfig:
    with open(filepath, "r") as f:
        data = json.load(f)
    return parse_config(data)
