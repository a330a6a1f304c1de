"""Options for a single module-source acquisition."""
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CACHE_DIR_NAME = ".module-source-cache"
DEFAULT_COMMAND = "plan"

# Command hooks see while the module source is being downloaded
CMD_INIT_FROM_MODULE = "init-from-module"


class Options(BaseModel):
    """Operator-supplied options for an acquisition.

    Options are immutable. Code that needs a variant (e.g. the download hooks,
    which must see a different command) clones with ``model_copy(update=...)``
    so the caller's value is never changed.
    """

    model_config = ConfigDict(frozen=True)

    working_dir: Path = Field(..., description="Operator tree to overlay")
    command: str = Field(default=DEFAULT_COMMAND, description="Command the wrapped tool will run")
    source: Optional[str] = Field(default=None, description="Explicit source override")
    source_update: bool = Field(default=False, description="Delete the cache before downloading")
    download_dir: Optional[Path] = Field(default=None, description="Cache root override")
    config_path: Optional[Path] = Field(default=None, description="Module configuration file")

    @property
    def cache_root(self) -> Path:
        """Directory under which download directories are created."""
        if self.download_dir is not None:
            return Path(self.download_dir)
        return Path(self.working_dir) / DEFAULT_CACHE_DIR_NAME

    def clone(self, **changes) -> "Options":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)
