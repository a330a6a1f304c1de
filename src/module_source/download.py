"""Acquire a module source: resolve, fetch if stale, overlay the working tree.

1. Resolve the source URL into a SourceDescriptor with a deterministic
   download directory, so later runs can reuse what was fetched.
2. Download the source into that directory unless the cached copy is current.
3. Copy the operator's working directory on top of the module directory.
4. Return options whose working_dir points at the module directory.
"""
import logging
import shutil
from typing import Optional

from pydantic import ValidationError

from module_source.core.config import ModuleConfig
from module_source.core.errors import (
    CacheInvalidationError,
    FetchError,
    HookError,
    OverlayError,
)
from module_source.core.options import CMD_INIT_FROM_MODULE, Options
from module_source.getters import build_getters, get_any
from module_source.hooks import run_action_with_hooks
from module_source.overlay import MODULE_MANIFEST_NAME, copy_folder_contents
from module_source.source.cache import should_fetch
from module_source.source.descriptor import SourceDescriptor, get_source_url, process_source

logger = logging.getLogger(__name__)


def acquire(options: Options, config: Optional[ModuleConfig] = None) -> Options:
    """Download the module source named by options or config, if any.

    Returns:
        Options repointed at the module directory, or the given options
        unchanged when no source is named
    """
    source = get_source_url(options, config)
    if source is None:
        logger.debug("No source configured; running in the working directory as is")
        return options
    return download_module_source(source, options, config)


def download_module_source(source: str, options: Options, config: Optional[ModuleConfig] = None) -> Options:
    """Resolve, download if necessary, and overlay a module source.

    Raises:
        ResolutionError: If the source reference is malformed
        CacheInvalidationError: If --source-update cannot clear the cache
        FetchError: If the download or one of its hooks fails
        PersistError: If the version marker cannot be written
        OverlayError: If the working tree cannot be copied
    """
    descriptor = process_source(source, options)

    fetched = download_source_if_necessary(descriptor, options, config)

    logger.info(f"Copying files from {options.working_dir} into {descriptor.working_dir}")
    try:
        if fetched:
            # A fresh tree has nothing to prune; the old manifest would delete module files
            (descriptor.working_dir / MODULE_MANIFEST_NAME).unlink(missing_ok=True)
        copy_folder_contents(options.working_dir, descriptor.working_dir, MODULE_MANIFEST_NAME)
    except (OSError, ValidationError) as e:
        raise OverlayError(
            f"Cannot copy {options.working_dir} into {descriptor.working_dir}: {e}"
        ) from e

    logger.info(f"Setting working directory to {descriptor.working_dir}")
    return options.clone(working_dir=descriptor.working_dir)


def download_source_if_necessary(
    descriptor: SourceDescriptor,
    options: Options,
    config: Optional[ModuleConfig] = None,
) -> bool:
    """Download the source unless the cached copy is already current.

    Returns:
        True if a download happened
    """
    if options.source_update:
        logger.info(
            f"The --source-update flag is set, so deleting the temporary folder "
            f"{descriptor.download_dir} before downloading source."
        )
        try:
            if descriptor.download_dir.is_symlink():
                descriptor.download_dir.unlink()
            elif descriptor.download_dir.exists():
                shutil.rmtree(descriptor.download_dir)
        except OSError as e:
            raise CacheInvalidationError(
                f"Cannot delete {descriptor.download_dir}: {e}"
            ) from e

    if not should_fetch(descriptor, force=options.source_update):
        logger.info(
            f"Files in {descriptor.working_dir} are up to date. Will not download again."
        )
        return False

    # Hooks waiting on the download see a distinct command; the caller's
    # options are left untouched.
    download_options = options.clone(command=CMD_INIT_FROM_MODULE)
    try:
        run_action_with_hooks(
            "download source",
            download_options,
            config,
            lambda: download_source(descriptor),
        )
    except FetchError:
        raise
    except (HookError, OSError) as e:
        raise FetchError(f"Failed to download {descriptor.canonical_source_url}: {e}") from e

    descriptor.write_version_file()
    return True


def download_source(descriptor: SourceDescriptor) -> None:
    """Fetch the root source URL into the download directory."""
    logger.info(
        f"Downloading configurations from {descriptor.root_source_url} "
        f"into {descriptor.download_dir}"
    )
    get_any(descriptor.download_dir, descriptor.root_source_url, build_getters())
