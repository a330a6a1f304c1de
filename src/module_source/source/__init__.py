"""Source resolution, version fingerprints and cache decisions."""
from module_source.core.errors import ResolutionError
from module_source.source.cache import find_config_files, should_fetch
from module_source.source.descriptor import (
    SourceDescriptor,
    encode_source_version,
    get_source_url,
    is_local_path,
    is_local_source,
    process_source,
    split_source_url,
)

__all__ = [
    "SourceDescriptor",
    "ResolutionError",
    "encode_source_version",
    "find_config_files",
    "get_source_url",
    "is_local_path",
    "is_local_source",
    "process_source",
    "should_fetch",
    "split_source_url",
]
