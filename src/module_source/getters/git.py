"""Git getter: clone a repository and check out a ref."""
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse, urlunparse

from module_source.core.errors import GetterError
from module_source.getters.base import Client, Getter, clear_destination

logger = logging.getLogger(__name__)


def _split_query(url: str) -> Tuple[str, Dict[str, str]]:
    """Separate ``?ref=...&depth=...`` from the repository URL."""
    parsed = urlparse(url)
    params = {k: v[-1] for k, v in parse_qs(parsed.query).items()}
    repo_url = urlunparse(parsed._replace(query=""))
    return repo_url, params


def _run_git(args, timeout: int) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise GetterError(f"git {args[0]} timed out after {timeout}s") from e


class GitGetter(Getter):
    """Clone with git into a temporary directory and install into dest.

    Query parameters:
        ref: branch, tag or commit to check out
        depth: shallow clone depth (requires ref to be a branch or tag)
    """

    def __init__(self, clone_timeout: int = 300, checkout_timeout: int = 60):
        self.clone_timeout = clone_timeout
        self.checkout_timeout = checkout_timeout

    def get(self, client: Client, dest: Path, url: str) -> None:
        repo_url, params = _split_query(url)
        ref: Optional[str] = params.get("ref")
        depth: Optional[str] = params.get("depth")

        if depth is not None and not depth.isdigit():
            raise GetterError(f"depth must be a positive integer; got '{depth}'")

        with tempfile.TemporaryDirectory(prefix="module-source-git-") as tmpdir:
            tmp_path = Path(tmpdir) / "repo"

            args = ["clone", "--quiet"]
            if depth:
                args += ["--depth", depth]
                if ref:
                    args += ["--branch", ref]
            args += [repo_url, str(tmp_path)]

            logger.info(f"Cloning {repo_url}")
            result = _run_git(args, self.clone_timeout)
            if result.returncode != 0:
                raise GetterError(f"Failed to clone {repo_url}: {result.stderr.strip()}")

            if ref and not depth:
                logger.info(f"Checking out {ref}")
                result = _run_git(
                    ["-C", str(tmp_path), "checkout", "--quiet", ref],
                    self.checkout_timeout,
                )
                if result.returncode != 0:
                    raise GetterError(f"Cannot checkout ref '{ref}': {result.stderr.strip()}")

            # Replace the previous checkout; files removed upstream must not linger
            logger.info(f"Installing {repo_url} into {dest}")
            clear_destination(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(
                tmp_path,
                dest,
                symlinks=True,
                ignore=shutil.ignore_patterns(".git"),
            )
