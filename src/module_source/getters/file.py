"""Local-path getters: the linking default and the forced-copy override."""
import logging
import os
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

from module_source.core.errors import GetterError
from module_source.core.options import DEFAULT_CACHE_DIR_NAME
from module_source.getters.base import Client, Getter, clear_destination

logger = logging.getLogger(__name__)


def source_path(url: str) -> Path:
    """Filesystem path named by a ``file://`` URL or a bare path."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        if parsed.netloc not in ("", "localhost"):
            raise GetterError(f"file URL must not name a host: {url}")
        return Path(unquote(parsed.path))
    if parsed.scheme:
        raise GetterError(f"Not a local path: {url}")
    return Path(url)


class FileGetter(Getter):
    """Link dest to the source path instead of copying it."""

    def get(self, client: Client, dest: Path, url: str) -> None:
        src = source_path(url)
        if not src.exists():
            raise GetterError(f"Source path not found: {src}")

        if dest.is_symlink():
            dest.unlink()
        elif dest.exists():
            raise GetterError(f"Destination already exists: {dest}")

        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Linking {dest} to {src}")
        dest.symlink_to(src, target_is_directory=src.is_dir())


class FileCopyGetter(Getter):
    """Copy a local path byte for byte, never creating links.

    Symbolic links in the source are followed and their targets copied;
    dangling links are skipped. dest is replaced, so files deleted from the
    source disappear from the copy.
    """

    def get(self, client: Client, dest: Path, url: str) -> None:
        src = source_path(url)
        if not src.exists():
            raise GetterError(f"Source path not found: {src}")

        # Also drops a link left by FileGetter, which would otherwise write into the source
        clear_destination(dest)

        logger.info(f"Copying {src} into {dest}")
        if src.is_dir():
            copy_tree(src, dest)
        else:
            dest.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest / src.name)


def copy_tree(src: Path, dest: Path) -> None:
    """Recursively copy src into dest, following links."""
    dest_resolved = Path(dest).resolve()

    def _ignore(directory, names):
        ignored = set()
        for name in names:
            path = Path(directory) / name
            if name == DEFAULT_CACHE_DIR_NAME:
                ignored.add(name)
            elif os.path.islink(path) and not path.exists():
                logger.warning(f"Skipping dangling symlink {path}")
                ignored.add(name)
            elif dest_resolved == path.resolve() or path.resolve() in dest_resolved.parents:
                ignored.add(name)
        return ignored

    shutil.copytree(
        src,
        dest,
        symlinks=False,
        ignore=_ignore,
        ignore_dangling_symlinks=True,
        dirs_exist_ok=True,
    )
