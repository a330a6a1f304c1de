"""Module configuration: declared source and lifecycle hooks."""
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from module_source.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "module-source.json"


class Hook(BaseModel):
    """A command run before or after an action for a set of commands."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Hook name used in log output")
    commands: List[str] = Field(..., description="Commands this hook applies to")
    execute: List[str] = Field(..., description="Program and arguments to run")
    run_on_error: bool = Field(default=False, description="Run even if the action failed")

    @field_validator("execute")
    @classmethod
    def validate_execute(cls, v: List[str]) -> List[str]:
        """Ensure there is a program to run."""
        if not v or not v[0]:
            raise ValueError("execute must contain at least the program to run")
        return v

    def applies_to(self, command: str) -> bool:
        return command in self.commands


class ModuleConfig(BaseModel):
    """Parsed module configuration."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "source": "git::https://example.com/modules/vpc.git?ref=v1.2.0",
                "before_hooks": [
                    {
                        "name": "announce",
                        "commands": ["init-from-module"],
                        "execute": ["echo", "downloading"],
                    }
                ],
                "after_hooks": [],
            }
        },
    )

    source: Optional[str] = Field(default=None, description="Declared module source")
    before_hooks: List[Hook] = Field(default_factory=list)
    after_hooks: List[Hook] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "ModuleConfig":
        """Load configuration from a JSON file.

        Raises:
            ConfigError: If the file is unreadable, not JSON, or not a valid config
        """
        path = Path(path)
        try:
            return cls.model_validate_json(path.read_text())
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

    def save(self, path: Path) -> None:
        """Write configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2, exclude_defaults=True))


def load_config(config_path: Optional[Path], working_dir: Path) -> ModuleConfig:
    """Load the module configuration for a working directory.

    An explicit path must exist. Without one, ``module-source.json`` in the
    working directory is used if present, otherwise an empty config.
    """
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        return ModuleConfig.load(config_path)

    default_path = Path(working_dir) / DEFAULT_CONFIG_NAME
    if default_path.exists():
        logger.info(f"Using config {default_path}")
        return ModuleConfig.load(default_path)

    return ModuleConfig()
