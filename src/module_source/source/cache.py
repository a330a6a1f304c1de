"""Cache oracle: decide whether a module source must be fetched again."""
import logging
from pathlib import Path
from typing import List

from module_source.source.descriptor import SourceDescriptor

logger = logging.getLogger(__name__)

# Files that mark a working directory as holding module configuration
CONFIG_FILE_PATTERNS = ("*.tf", "*.tf.json")


def find_config_files(working_dir: Path) -> List[Path]:
    """Return the module configuration files directly inside working_dir."""
    working_dir = Path(working_dir)
    files = []
    for pattern in CONFIG_FILE_PATTERNS:
        files.extend(p for p in working_dir.glob(pattern) if p.is_file())
    return sorted(files)


def should_fetch(descriptor: SourceDescriptor, force: bool = False) -> bool:
    """Return True if the source has to be (re)fetched.

    Checks, in order:
        1. force: the caller already removed the download directory
        2. local sources: always re-copied, never cached
        3. download dir, working dir or version file missing
        4. working dir has no configuration files (half-populated cache)
        5. recorded fingerprint differs from the current one

    Raises:
        CacheReadError: If the version file exists but cannot be read
    """
    if force:
        return True

    if descriptor.is_local:
        logger.info(
            f"Source {descriptor.canonical_source_url} is a local path, "
            f"so it will be copied again"
        )
        return True

    if (
        not descriptor.download_dir.exists()
        or not descriptor.working_dir.exists()
        or not descriptor.version_file.exists()
    ):
        return True

    if not find_config_files(descriptor.working_dir):
        logger.info(
            f"Working dir {descriptor.working_dir} exists but contains no configuration "
            f"files, so assuming code needs to be downloaded again."
        )
        return True

    current_version = descriptor.encode_version()
    previous_version = descriptor.read_version_file()
    return previous_version != current_version
