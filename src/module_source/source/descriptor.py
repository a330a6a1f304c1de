"""Source descriptor: resolve references and derive cache locations."""
import base64
import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from module_source.core.config import ModuleConfig
from module_source.core.errors import CacheReadError, PersistError, ResolutionError
from module_source.core.options import Options

logger = logging.getLogger(__name__)

VERSION_FILE_NAME = ".module-source-version"

_FORCED_GETTER_RE = re.compile(r"^([A-Za-z0-9]+)::(.*)$")
_GITHUB_SHORTHAND_RE = re.compile(r"^github\.com/([^/?]+)/([^/?]+)(.*)$")
_SCP_LIKE_RE = re.compile(r"^([A-Za-z0-9_.-]+@[A-Za-z0-9_.-]+):([^/].*)$")

# Backends whose references do not need an explicit forced prefix
_SCHEME_GETTERS = {"file", "git", "http", "https"}


def encode_base64_sha1(value: str) -> str:
    """URL-safe base64 of the SHA-1 of ``value``, without padding."""
    digest = hashlib.sha1(value.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def encode_source_version(canonical_source_url: str) -> str:
    """Fingerprint identifying this exact version of this exact source.

    Computed from the reference alone; it does not notice upstream content
    changing behind a fixed reference.
    """
    return encode_base64_sha1(canonical_source_url)


def split_forced_getter(url: str) -> Tuple[str, str]:
    """Split ``git::https://...`` into ``("git", "https://...")``.

    Returns an empty getter name when there is no forced prefix.
    """
    match = _FORCED_GETTER_RE.match(url)
    if match is None:
        return "", url
    return match.group(1), match.group(2)


def split_source_url(url: str) -> Tuple[str, str]:
    """Split a source URL into its root URL and module subdirectory.

    The subdirectory follows a ``//`` separator after the scheme; the query
    string stays with the root URL.

    Examples:
        git::https://host/repo.git//modules/vpc?ref=v1
            -> ("git::https://host/repo.git?ref=v1", "modules/vpc")
        file:///srv/modules/vpc -> ("file:///srv/modules/vpc", "")
    """
    forced, rest = split_forced_getter(url)
    prefix = f"{forced}::" if forced else ""

    stop = rest.find("?")
    if stop == -1:
        stop = len(rest)

    offset = 0
    scheme_idx = rest.find("://", 0, stop)
    if scheme_idx != -1:
        offset = scheme_idx + 3

    idx = rest.find("//", offset, stop)
    if idx == -1:
        return url, ""

    subdir = rest[idx + 2:stop].strip("/")
    root = rest[:idx] + rest[stop:]
    return prefix + root, subdir


def strip_query(url: str) -> str:
    idx = url.find("?")
    return url if idx == -1 else url[:idx]


def getter_name(canonical_source_url: str) -> str:
    """Name of the fetch backend that handles a canonical source URL."""
    forced, rest = split_forced_getter(canonical_source_url)
    if forced:
        return forced
    return urlparse(rest).scheme


def is_local_path(source: str) -> bool:
    """True if a raw reference denotes a local filesystem path.

    Classification looks at prefixes and schemes only; remote references
    never exist on disk before they are fetched.
    """
    source = source.strip()
    if source in (".", ".."):
        return True
    if source.startswith(("/", "./", "../", "~")):
        return True
    return source.startswith(("file://", "file::"))


def is_local_source(canonical_source_url: str) -> bool:
    """True if a canonical source is served by the local-path backend."""
    return getter_name(canonical_source_url) == "file"


def _local_source_url(source: str, working_dir: Path) -> str:
    if source.startswith("file::"):
        source = source[len("file::"):]
    if source.startswith("file://"):
        source = source[len("file://"):]

    query = ""
    if "?" in source:
        source, query = source.split("?", 1)
        query = f"?{query}"

    path_part, subdir = source, ""
    # A leading "//" is part of an absolute path, not a subdir separator
    idx = source.find("//", 1)
    if idx != -1:
        path_part, subdir = source[:idx], source[idx + 2:].strip("/")

    path = Path(path_part).expanduser()
    if not path.is_absolute():
        path = Path(working_dir) / path
    path = Path(os.path.normpath(path.absolute()))

    url = f"file://{path.as_posix()}"
    if subdir:
        url += f"//{subdir}"
    return url + query


def to_source_url(source: str, working_dir: Path) -> str:
    """Normalize a raw reference into its canonical source URL.

    Raises:
        ResolutionError: If the reference is empty, malformed, or no fetch
            backend can be determined for it
    """
    source = (source or "").strip()
    if not source:
        raise ResolutionError("Source reference is empty")

    if is_local_path(source):
        return _local_source_url(source, working_dir)

    forced, rest = split_forced_getter(source)
    if forced and not rest:
        raise ResolutionError(f"Source reference '{source}' has nothing after '{forced}::'")
    if source.startswith("::"):
        raise ResolutionError(f"Source reference '{source}' has an empty getter name")

    if forced:
        try:
            urlparse(rest)
        except ValueError as e:
            raise ResolutionError(f"Cannot parse source reference '{source}': {e}") from e
        return source

    match = _GITHUB_SHORTHAND_RE.match(source)
    if match:
        owner, repo, remainder = match.groups()
        if repo.endswith(".git"):
            repo = repo[:-4]
        return f"git::https://github.com/{owner}/{repo}.git{remainder}"

    match = _SCP_LIKE_RE.match(source)
    if match:
        user_host, path = match.groups()
        return f"git::ssh://{user_host}/{path}"

    try:
        parsed = urlparse(source)
    except ValueError as e:
        raise ResolutionError(f"Cannot parse source reference '{source}': {e}") from e

    if parsed.scheme not in _SCHEME_GETTERS or not (parsed.netloc or parsed.path):
        raise ResolutionError(
            f"Cannot determine how to fetch '{source}'; "
            f"use a local path, a URL, or a forced getter such as 'git::'"
        )
    return source


class SourceDescriptor(BaseModel):
    """Where a module source comes from and where it is cached.

    All paths are derived from the canonical source URL and the operator's
    working directory, so repeated runs against the same reference reuse the
    same download directory while distinct references never collide.
    """

    model_config = ConfigDict(frozen=True)

    raw_source: str = Field(..., description="Reference as given by the operator or config")
    canonical_source_url: str = Field(..., description="Normalized reference, the cache identity")
    root_source_url: str = Field(..., description="Canonical URL without the module subdirectory")
    download_dir: Path = Field(..., description="Cache directory for this source")
    working_dir: Path = Field(..., description="Module directory inside download_dir")
    version_file: Path = Field(..., description="Marker holding the last fetched fingerprint")

    @property
    def is_local(self) -> bool:
        return is_local_source(self.canonical_source_url)

    def encode_version(self) -> str:
        return encode_source_version(self.canonical_source_url)

    def read_version_file(self) -> str:
        """Read the fingerprint recorded by the last successful fetch."""
        try:
            return self.version_file.read_text().strip()
        except OSError as e:
            raise CacheReadError(f"Cannot read version file {self.version_file}: {e}") from e

    def write_version_file(self) -> None:
        """Atomically record the current fingerprint.

        Raises:
            PersistError: If the marker cannot be written
        """
        version = self.encode_version()
        try:
            self.version_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{VERSION_FILE_NAME}.", dir=self.version_file.parent
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(version)
                os.replace(tmp_name, self.version_file)
            except OSError:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistError(f"Cannot write version file {self.version_file}: {e}") from e
        logger.debug(f"Wrote version {version} to {self.version_file}")

    def to_dict(self) -> dict:
        """Convert to dictionary (for logging, display)."""
        data = self.model_dump(mode="json")
        data["version"] = self.encode_version()
        data["is_local"] = self.is_local
        return data


def process_source(source: str, options: Options) -> SourceDescriptor:
    """Resolve a raw reference into a fully populated SourceDescriptor.

    Args:
        source: Reference from the command line or configuration
        options: Acquisition options (working directory, cache root)

    Returns:
        SourceDescriptor with deterministic download and working directories

    Raises:
        ResolutionError: If the reference is malformed
    """
    working_dir = Path(os.path.normpath(Path(options.working_dir).absolute()))
    canonical = to_source_url(source, working_dir)
    root_url, module_path = split_source_url(canonical)

    encoded_working_dir = encode_base64_sha1(working_dir.as_posix())
    encoded_source = encode_base64_sha1(strip_query(root_url))
    cache_root = Path(os.path.normpath(options.cache_root.absolute()))
    download_dir = cache_root / encoded_working_dir / encoded_source

    module_dir = download_dir / module_path if module_path else download_dir

    return SourceDescriptor(
        raw_source=source,
        canonical_source_url=canonical,
        root_source_url=root_url,
        download_dir=download_dir,
        working_dir=module_dir,
        version_file=download_dir / VERSION_FILE_NAME,
    )


def get_source_url(options: Options, config: Optional[ModuleConfig]) -> Optional[str]:
    """Return the source to download, or None if none was named.

    An explicit ``--source`` takes precedence over the configured source.
    """
    if options.source:
        return options.source
    if config is not None and config.source:
        return config.source
    return None
