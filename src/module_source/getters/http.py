"""HTTP getter: download files and archives, following X-Terraform-Get."""
import logging
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from module_source.core.errors import GetterError
from module_source.getters.base import Client, Getter, clear_destination

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "module-source/0.1.0"

# Header a server uses to say "the real source is over there"
REDIRECT_HEADER = "X-Terraform-Get"

ARCHIVE_SUFFIXES = {
    ".tar.gz": "tar.gz",
    ".tgz": "tar.gz",
    ".tar": "tar",
    ".zip": "zip",
}

SESSION_RETRY_STATUSES = (500, 502, 503, 504)
SESSION_RETRIES = 3


class DefaultTimeoutAdapter(HTTPAdapter):
    """HTTPAdapter applying a timeout to requests that do not set their own.

    requests has no session-wide timeout, and a module download must not hang
    forever on a stalled server.
    """

    def __init__(self, *args, timeout: int = DEFAULT_TIMEOUT, **kwargs) -> None:
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):  # type: ignore[override]
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def create_session(retries: int = SESSION_RETRIES, timeout: int = DEFAULT_TIMEOUT) -> requests.Session:
    """Session for module downloads: idempotent retries on 5xx, default timeout."""
    retry = Retry(
        total=retries,
        backoff_factor=0.3,
        status_forcelist=SESSION_RETRY_STATUSES,
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    adapter = DefaultTimeoutAdapter(max_retries=retry, timeout=timeout)

    session = requests.Session()
    session.headers["User-Agent"] = DEFAULT_USER_AGENT
    for prefix in ("http://", "https://"):
        session.mount(prefix, adapter)
    return session


def archive_kind(path: str) -> Optional[str]:
    """Archive format implied by a file name, or None."""
    for suffix, kind in ARCHIVE_SUFFIXES.items():
        if path.endswith(suffix):
            return kind
    return None


def extract_archive(archive: Path, dest: Path, kind: str) -> None:
    """Extract a zip or tar archive into dest."""
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if kind == "zip":
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(dest)
        elif kind in ("tar", "tar.gz"):
            with tarfile.open(archive) as tf:
                tf.extractall(dest, filter="data")
        else:
            raise GetterError(f"Unsupported archive format: {kind}")
    except (zipfile.BadZipFile, tarfile.TarError) as e:
        raise GetterError(f"Cannot extract {archive}: {e}") from e


class HttpGetter(Getter):
    """Download a URL into dest.

    A response carrying an ``X-Terraform-Get`` header is not stored; the
    referenced source is fetched through the client instead. Archives
    (by file suffix or ``?archive=zip|tar|tar.gz``) are extracted.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session

    def get(self, client: Client, dest: Path, url: str) -> None:
        parsed = urlparse(url)
        params = parse_qsl(parsed.query, keep_blank_values=True)
        kind = dict(params).get("archive") or archive_kind(parsed.path)
        request_url = urlunparse(
            parsed._replace(query=urlencode([(k, v) for k, v in params if k != "archive"]))
        )

        # One session per fetch so concurrent acquisitions never share one
        session = self._session or create_session()
        try:
            self._download(client, session, dest, request_url, kind)
        finally:
            if self._session is None:
                session.close()

    def _download(self, client: Client, session: requests.Session, dest: Path, url: str, kind: Optional[str]) -> None:
        logger.info(f"Downloading {url}")
        try:
            response = session.get(url, stream=True)
        except requests.RequestException as e:
            raise GetterError(f"HTTP request to {url} failed: {e}") from e

        with response:
            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise GetterError(f"HTTP request to {url} failed: {e}") from e

            redirect = response.headers.get(REDIRECT_HEADER)
            if redirect:
                target = urljoin(url, redirect)
                logger.info(f"{url} points to {target}")
                client.get(dest, target)
                return

            name = Path(urlparse(url).path).name or "download"
            with tempfile.TemporaryDirectory(prefix="module-source-http-") as tmpdir:
                tmp_file = Path(tmpdir) / name
                try:
                    with open(tmp_file, "wb") as f:
                        for chunk in response.iter_content(chunk_size=65536):
                            if chunk:
                                f.write(chunk)
                except requests.RequestException as e:
                    raise GetterError(f"Download of {url} failed: {e}") from e

                clear_destination(dest)
                dest.mkdir(parents=True, exist_ok=True)
                if kind:
                    extract_archive(tmp_file, dest, kind)
                else:
                    shutil.copy2(tmp_file, dest / name)
