"""Fetch backends and the per-acquisition backend registry."""
from types import MappingProxyType
from typing import Dict, Mapping

from module_source.getters.base import Client, Getter, get_any
from module_source.getters.file import FileCopyGetter, FileGetter
from module_source.getters.git import GitGetter
from module_source.getters.http import HttpGetter

# Read-only; build_getters() derives a fresh map from it for every acquisition
DEFAULT_GETTERS: Mapping[str, Getter] = MappingProxyType(
    {
        "file": FileGetter(),
        "git": GitGetter(),
        "http": HttpGetter(),
        "https": HttpGetter(),
    }
)


def build_getters() -> Dict[str, Getter]:
    """Return a new backend map with the local-path getter forced to copy.

    Identical to DEFAULT_GETTERS except under "file". Every call returns a new
    dict, so concurrent acquisitions never share or mutate one map.
    """
    getters: Dict[str, Getter] = {}
    for name, getter in DEFAULT_GETTERS.items():
        if name == "file":
            getters[name] = FileCopyGetter()
        else:
            getters[name] = getter
    return getters


__all__ = [
    "Client",
    "DEFAULT_GETTERS",
    "FileCopyGetter",
    "FileGetter",
    "Getter",
    "GitGetter",
    "HttpGetter",
    "build_getters",
    "get_any",
]
