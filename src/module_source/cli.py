"""Module Source CLI - Command line interface for module-source."""
import json
import logging
import sys
from pathlib import Path

import click

from module_source.core.config import load_config
from module_source.core.errors import (
    ConfigError,
    FetchError,
    OverlayError,
    ResolutionError,
)
from module_source.core.options import DEFAULT_COMMAND, Options
from module_source.download import acquire
from module_source.source import process_source

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(name)s: %(message)s",
)
logger = logging.getLogger("module_source")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Module Source - fetch, cache and overlay infrastructure module sources."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@main.command()
@click.option(
    "--working-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory whose files are copied on top of the module (default: current directory)",
)
@click.option(
    "--source",
    default=None,
    help="Module source; overrides the source in the config file",
)
@click.option(
    "--source-update",
    is_flag=True,
    help="Delete the cached copy and download the source again",
)
@click.option(
    "--download-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache root for downloaded sources (default: <working-dir>/.module-source-cache)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Module config file (default: <working-dir>/module-source.json if present)",
)
@click.option(
    "--command",
    default=DEFAULT_COMMAND,
    help="Command the wrapped tool will run; selects which hooks apply",
)
def download(
    working_dir: Path,
    source: str,
    source_update: bool,
    download_dir: Path,
    config_path: Path,
    command: str,
):
    """Download a module source and overlay the working directory onto it.

    Examples:
        module-source download --source "git::https://example.com/mod.git?ref=v1"
        module-source download --working-dir live/vpc --source-update

    Exit codes:
        0: Success
        1: Generic runtime failure
        2: Invalid CLI usage
        3: Source reference could not be resolved
        4: Download failed
        5: Overlay failed
        7: Configuration file error
    """
    options = Options(
        working_dir=working_dir.absolute(),
        command=command,
        source=source,
        source_update=source_update,
        download_dir=download_dir.absolute() if download_dir else None,
        config_path=config_path,
    )

    try:
        config = load_config(options.config_path, options.working_dir)
        result = acquire(options, config)

        if result is options:
            click.echo("[OK] No source configured, nothing to download")
        else:
            click.echo("[OK] Module source ready")
            click.echo(f"  Working dir: {result.working_dir}")
        sys.exit(0)

    except ConfigError as e:
        logger.error(f"Configuration error: {str(e)}")
        sys.exit(7)

    except ResolutionError as e:
        logger.error(f"Invalid source: {str(e)}")
        sys.exit(3)

    except FetchError as e:
        logger.error(f"Download failed: {str(e)}")
        sys.exit(4)

    except OverlayError as e:
        logger.error(f"Overlay failed: {str(e)}")
        sys.exit(5)

    except Exception as e:
        logger.error(f"Acquisition failed: {str(e)}")
        sys.exit(1)


@main.command()
@click.argument("source")
@click.option(
    "--working-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory the source is resolved against",
)
@click.option(
    "--download-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache root for downloaded sources",
)
def inspect(source: str, working_dir: Path, download_dir: Path):
    """Show where SOURCE would be cached and its version fingerprint.

    Nothing is downloaded.
    """
    options = Options(
        working_dir=working_dir.absolute(),
        download_dir=download_dir.absolute() if download_dir else None,
    )
    try:
        descriptor = process_source(source, options)
    except ResolutionError as e:
        logger.error(f"Invalid source: {str(e)}")
        sys.exit(3)

    click.echo(json.dumps(descriptor.to_dict(), indent=2))


if __name__ == "__main__":
    main()
