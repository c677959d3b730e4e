"""
Archive path templates, downloads (HTTP(S), FTP, FTPS) and
pre-decompression of downloaded products.
"""

from ftplib import FTP, FTP_TLS, all_errors as ftp_errors
from typing import Optional, Tuple, Type
from urllib.parse import urlparse
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
import os.path

import datetime
import logging
import gzip
import shutil
import threading
import time

import unlzw3

from gnss_fetch.time.gpst import GPSTime

DEFAULT_TIMEOUT = 60
DEFAULT_FTP_USERNAME = "anonymous"
DEFAULT_FTP_PASSWORD = "anonymous"
HTTP_USER_AGENT = "gnss-fetch (Python requests)"
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

CDDIS_HOST = "cddis.nasa.gov"
CDDIS_ARCHIVE_URL = f"https://{CDDIS_HOST}/archive/"
EARTHDATA_LOGIN_HOST = "urs.earthdata.nasa.gov"
EARTHDATA_SESSION_LIFETIME = 2 * 3600


class DownloadError(Exception):
    """
    Raised when a resource cannot be fetched.  `temporary` marks failures
    worth retrying later (server errors, timeouts, dropped connections).
    """

    def __init__(self, message: str, temporary: bool = False):
        super().__init__(message)
        self.temporary = temporary


def format_filepath(filepath_expr: str, dt: Optional[datetime.datetime | datetime.date] = None, **kwargs) -> str:
    """
    ------------------------------------------------------------------------
    `filepath_expr` -- a formattable string that defines the full filepath.
        Intended to mirror filepath format on website / FTP site (should be
        mirrored by folder structure of downloaded files).  See below about
        placeholders.

    Placeholders:
        Use the Python format syntax for adding placeholders to the path or
        file expressions.  E.g. `/path/to/data/{type}/`.  These will be
        replaced via `.format` using the date/time arguments derived from
        `dt` and the keywords arguments from `kwargs`

    Reserved Placeholders:
        For date/time-related expressions in the path or filename
        expressions, use the placeholders used on IGS products page (yyyy,
        yy, mm, dd, ddd, hh, wwww, d).  When passing in a datetime into
        `format_filepath(<filepath>, dt=datetime)`, this function computes
        all the necessary placeholders.

        Passing `site=<name>` also fills `{site}` (lower-case, 4 chars),
        `{SITE}` (upper-case, 4 chars) and `{SITE_LONG}` (upper-case, 9
        chars, e.g. `ALGO00CAN`).

    Example:
        CDDIS daily RINEX 2 path: gnss/data/daily/{yyyy}/{ddd}/{yy}d/
        CDDIS daily RINEX 2 file: {site}{ddd}0.{yy}d.Z
        RINEX 3 long name: {SITE_LONG}_R_{yyyy}{ddd}0000_01D_30S_MO.crx.gz
    """
    if dt is not None:
        if not isinstance(dt, datetime.datetime):
            dt = datetime.datetime(dt.year, dt.month, dt.day)
        gpst = GPSTime.from_datetime(dt)
        date_params = {
            "yyyy": f"{dt.year:04}",  # year
            "yy": f"{dt.year % 100:02}",  # 2-digit year
            "mm": f"{dt.month:02}",  # month
            "dd": f"{dt.day:02}",  # day of month
            "ddd": f"{dt.timetuple().tm_yday:03}",  # day of year
            "hh": f"{dt.hour:02}",  # hour
            "wwww": f"{gpst.week_num:04}",  # gps week no.
            "d": f"{gpst.day_of_week:01}",  # day of week
        }
        kwargs.update(date_params)
    site = kwargs.get("site")
    if site is not None:
        kwargs["site"] = site[:4].lower()
        kwargs["SITE"] = site[:4].upper()
        kwargs["SITE_LONG"] = site[:9].upper()
    return filepath_expr.format(**kwargs)


def _make_output_dir(output_filepath: str) -> None:
    output_dir = os.path.dirname(output_filepath)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)


def create_session(
    retries: int = 3,
    backoff_factor: float = 1.0,
    session_class: Type[requests.Session] = requests.Session,
) -> requests.Session:
    """Returns a `requests.Session` retrying on transient HTTP failures."""
    session = session_class()
    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        raise_on_status=False,  # hand the last response to the status check
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": HTTP_USER_AGENT})
    return session


class EarthdataSession(requests.Session):
    """
    `requests.Session` that keeps its credentials across the redirects
    between an archive and Earthdata Login (plain `requests` drops the
    `Authorization` header on any cross-host redirect) and then holds the
    archive's session cookies.
    """

    def rebuild_auth(self, prepared_request, response):
        headers = prepared_request.headers
        if "Authorization" in headers:
            original_host = urlparse(response.request.url).hostname
            redirect_host = urlparse(prepared_request.url).hostname
            if original_host != redirect_host and EARTHDATA_LOGIN_HOST not in (original_host, redirect_host):
                del headers["Authorization"]


def is_cddis_url(url: str) -> bool:
    hostname = urlparse(url).hostname or ""
    return hostname == CDDIS_HOST or hostname.endswith("." + CDDIS_HOST)


def earthdata_login(
    username: str,
    password: str,
    retries: int = 3,
    backoff_factor: float = 1.0,
    timeout: float = DEFAULT_TIMEOUT,
) -> EarthdataSession:
    """
    Logs in to NASA Earthdata Login by requesting the CDDIS archive root and
    following the redirects through the login host.  Returns the session,
    whose cookies authenticate later archive requests.
    """
    session = create_session(retries, backoff_factor, session_class=EarthdataSession)
    session.auth = (username, password)
    try:
        r = session.get(CDDIS_ARCHIVE_URL, timeout=timeout)
    except (requests.ConnectionError, requests.Timeout, requests.exceptions.RetryError) as e:
        session.close()
        raise DownloadError(f"Earthdata login failed ({e})", temporary=True) from e
    except requests.RequestException as e:
        session.close()
        raise DownloadError(f"Earthdata login failed ({e})") from e
    if r.status_code != 200 or "Earthdata Login" in r.text:
        session.close()
        raise DownloadError(
            f"Earthdata login failed for {username} (HTTP {r.status_code})",
            temporary=r.status_code >= 500,
        )
    return session


# one logged-in session per worker thread and credentials
_earthdata_sessions = threading.local()


def get_earthdata_session(username: str, password: str) -> EarthdataSession:
    """
    Returns the calling thread's Earthdata session for `username`, logging in
    on first use and again once the session is older than
    `EARTHDATA_SESSION_LIFETIME` seconds.
    """
    cache = getattr(_earthdata_sessions, "cache", None)
    if cache is None:
        cache = _earthdata_sessions.cache = {}
    key = (username, password)
    now = time.monotonic()
    entry = cache.get(key)
    if entry is not None:
        session, login_time = entry
        if now - login_time <= EARTHDATA_SESSION_LIFETIME:
            return session
        session.close()
    session = earthdata_login(username, password)
    logging.info(f"logged in to Earthdata as {username}")
    cache[key] = (session, now)
    return session


def http_download(
        url_path: str,
        output_filepath: str,
        auth: Optional[Tuple[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> str:
    """Given URL to HTTP resource and a local output filepath, streams the
    resource to local disc.

    auth -- Tuple of 'username' and 'password'

    Returns `output_filepath` if successful, otherwise raises DownloadError
    """
    if session is None:
        session = create_session()
    try:
        with session.get(url_path, auth=auth, timeout=timeout, stream=True) as r:
            if r.status_code != 200:
                raise DownloadError(
                    f"Failure to download: {url_path} (HTTP {r.status_code})",
                    temporary=r.status_code in RETRY_STATUS_CODES or r.status_code >= 500,
                )
            _make_output_dir(output_filepath)
            with open(output_filepath, "wb") as f:
                for chunk in r.iter_content(chunk_size=65536):
                    f.write(chunk)
    except (requests.ConnectionError, requests.Timeout, requests.exceptions.RetryError) as e:
        raise DownloadError(f"Failure to download: {url_path} ({e})", temporary=True) from e
    except requests.RequestException as e:
        raise DownloadError(f"Failure to download: {url_path} ({e})") from e
    return output_filepath


def _ftp_retrieve(ftp: FTP, url_filepath: str, output_filepath: str) -> None:
    path = os.path.dirname(url_filepath)
    filename = os.path.basename(url_filepath)
    if path:
        ftp.cwd(path)
    _make_output_dir(output_filepath)
    with open(output_filepath, "wb") as f:
        ftp.retrbinary("RETR " + filename, f.write)


def ftp_download(
    ftp_host: str,
    url_filepath: str,
    output_filepath: str,
    username: str = DEFAULT_FTP_USERNAME,
    password: str = DEFAULT_FTP_PASSWORD,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Given URL to data on FTP site and a local output location, uses Python
    FTP library's `retrbinary` function to download file.
    """
    try:
        with FTP(ftp_host, timeout=timeout) as ftp:
            ftp.login(user=username, passwd=password)
            _ftp_retrieve(ftp, url_filepath, output_filepath)
    except ftp_errors as e:
        raise DownloadError(
            f"Failure to download: ftp://{ftp_host}{url_filepath} ({e})",
            temporary=not str(e).startswith("5"),
        ) from e
    return output_filepath


def ftps_download(
    ftp_host: str,
    url_filepath: str,
    output_filepath: str,
    username: str = DEFAULT_FTP_USERNAME,
    password: str = DEFAULT_FTP_PASSWORD,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Same as `ftp_download` over explicit TLS (e.g. gdc.cddis.eosdis.nasa.gov)."""
    try:
        with FTP_TLS(host=ftp_host, timeout=timeout) as ftps:
            ftps.login(user=username, passwd=password)
            ftps.prot_p()
            _ftp_retrieve(ftps, url_filepath, output_filepath)
    except ftp_errors as e:
        raise DownloadError(
            f"Failure to download: ftps://{ftp_host}{url_filepath} ({e})",
            temporary=not str(e).startswith("5"),
        ) from e
    return output_filepath


def download(
    url: str,
    output_filepath: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> str:
    """
    Downloads `url` to `output_filepath`, choosing the transport from the
    URL scheme (`http`, `https`, `ftp`, `ftps`).

    HTTPS requests to CDDIS with credentials go through the calling
    thread's Earthdata session (see `get_earthdata_session`).
    """
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        if username and password and is_cddis_url(url):
            return http_download(url, output_filepath, session=get_earthdata_session(username, password))
        auth = (username, password) if username and password else None
        return http_download(url, output_filepath, auth=auth, session=session)
    if parsed.scheme in ("ftp", "ftps"):
        if parsed.hostname is None:
            raise DownloadError(f"invalid URL: {url}")
        downloader = ftp_download if parsed.scheme == "ftp" else ftps_download
        return downloader(
            parsed.hostname,
            parsed.path,
            output_filepath,
            username=username or DEFAULT_FTP_USERNAME,
            password=password or DEFAULT_FTP_PASSWORD,
        )
    raise DownloadError(f"unsupported URL scheme: {url}")


def _gunzip(filepath: str, output_filepath: str) -> None:
    with gzip.open(filepath, "rb") as f_in:
        with open(output_filepath, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)


def _unlzw(filepath: str, output_filepath: str) -> None:
    with open(filepath, "rb") as f_in:
        content = unlzw3.unlzw(f_in.read())
    with open(output_filepath, "wb") as f_out:
        f_out.write(content)


def decompressed_filepath(filepath: str) -> str:
    """Path `decompress` writes to: `filepath` without its `.gz` / `.Z` extension."""
    lower = filepath.lower()
    if lower.endswith(".gz"):
        return filepath[:-3]
    if lower.endswith(".z"):
        return filepath[:-2]
    return filepath


def decompress(filepath: str, output_filepath: Optional[str] = None) -> str:
    """
    ----------------------------------------------------------------------------
    Given the path to file `filepath` ending in `.gz` (gzip) or `.Z` (Unix
    compress / LZW), decompresses it to `output_filepath` (default: the path
    without the compression extension) and returns the decompressed path.
    Files with other extensions are returned unchanged.

    A corrupt stream raises (`OSError`, `EOFError`, `zlib.error` or
    `ValueError`) and leaves no output file behind.
    """
    lower = filepath.lower()
    if lower.endswith(".gz"):
        extract = _gunzip
    elif lower.endswith(".z"):
        extract = _unlzw
    else:
        logging.info(f"{filepath} is not compressed; leaving as is")
        return filepath
    if output_filepath is None:
        output_filepath = decompressed_filepath(filepath)
    try:
        extract(filepath, output_filepath)
    except Exception:
        if os.path.exists(output_filepath):
            os.remove(output_filepath)
        raise
    return output_filepath
