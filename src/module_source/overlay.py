"""Overlay: copy the operator's working tree into a fetched module tree."""
import logging
import os
import shutil
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field

from module_source.core.options import DEFAULT_CACHE_DIR_NAME

logger = logging.getLogger(__name__)

# Manifest of files copied from the operator's tree into the module tree
MODULE_MANIFEST_NAME = ".module-source-manifest"


class OverlayManifest(BaseModel):
    """Files a previous overlay copied, relative to the destination."""

    schema_version: str = Field(default="overlay_manifest_v1")
    files: List[str] = Field(default_factory=list)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, path: Path) -> "OverlayManifest":
        path = Path(path)
        return cls.model_validate_json(path.read_text())

    def clean(self, dest: Path) -> None:
        """Remove files recorded by the previous overlay."""
        dest = Path(dest)
        for rel in self.files:
            target = dest / rel
            if target.is_file() or target.is_symlink():
                target.unlink()


def _walk_files(source: Path, dest: Path, manifest_name: str) -> List[Path]:
    """Files under source to copy, relative to source."""
    dest_resolved = dest.resolve()
    files = []
    for dirpath, dirnames, filenames in os.walk(source, followlinks=True):
        current = Path(dirpath)
        # Never descend into the cache, or into anything holding the destination
        dirnames[:] = sorted(
            d for d in dirnames
            if d != DEFAULT_CACHE_DIR_NAME
            and (current / d).resolve() != dest_resolved
            and (current / d).resolve() not in dest_resolved.parents
        )
        for name in sorted(filenames):
            if name == manifest_name:
                continue
            path = current / name
            if not path.exists():
                logger.warning(f"Skipping dangling symlink {path}")
                continue
            files.append(path.relative_to(source))
    return files


def copy_folder_contents(source: Path, dest: Path, manifest_name: str = MODULE_MANIFEST_NAME) -> None:
    """Copy every file from source into dest, tracked by a manifest.

    Files recorded in dest's manifest by the previous run are removed first,
    so files deleted from source also disappear from dest. Files named
    ``manifest_name`` are never copied from source.

    Raises:
        OSError: If a file cannot be removed or copied
    """
    source = Path(source)
    dest = Path(dest)
    manifest_path = dest / manifest_name

    if manifest_path.exists():
        OverlayManifest.load(manifest_path).clean(dest)

    dest.mkdir(parents=True, exist_ok=True)
    copied = []
    for rel in _walk_files(source, dest, manifest_name):
        target = dest / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()
        shutil.copy2(source / rel, target)
        copied.append(rel.as_posix())

    OverlayManifest(files=copied).save(manifest_path)
    logger.debug(f"Copied {len(copied)} files from {source} into {dest}")
