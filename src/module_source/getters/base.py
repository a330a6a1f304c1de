"""Fetch backend interface and the client that dispatches between backends."""
import logging
import shutil
from pathlib import Path
from typing import Dict

from module_source.core.errors import GetterError
from module_source.source.descriptor import getter_name, split_forced_getter

logger = logging.getLogger(__name__)


def clear_destination(dest: Path) -> None:
    """Remove whatever a previous fetch left at dest.

    Getters replace dest rather than merging into it, so files dropped
    upstream never survive a refetch.
    """
    dest = Path(dest)
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.exists():
        shutil.rmtree(dest)


class Getter:
    """Transfers the source at a URL into a destination directory.

    ``client`` is the Client that selected this getter. Getters that discover
    another source to fetch (for example an HTTP redirect header) must go
    through ``client.get`` so the nested fetch uses the same backend map.
    """

    def get(self, client: "Client", dest: Path, url: str) -> None:
        raise NotImplementedError


class Client:
    """Selects a getter by forced prefix or URL scheme and runs it."""

    def __init__(self, getters: Dict[str, Getter]):
        self.getters = getters

    def get(self, dest: Path, url: str) -> None:
        """Fetch url into dest.

        Raises:
            GetterError: If no getter handles the URL or the transfer fails
        """
        name = getter_name(url)
        getter = self.getters.get(name)
        if getter is None:
            raise GetterError(f"No getter registered for '{name}' (source {url})")

        _, bare_url = split_forced_getter(url)
        logger.debug(f"Using {type(getter).__name__} for {url}")
        try:
            getter.get(self, Path(dest), bare_url)
        except GetterError:
            raise
        except OSError as e:
            raise GetterError(f"Failed to fetch {url} into {dest}: {e}") from e


def get_any(dest: Path, url: str, getters: Dict[str, Getter]) -> None:
    """Fetch url into dest using the given backend map."""
    Client(getters).get(dest, url)
