"""Run lifecycle hooks before and after an action."""
import logging
import os
import subprocess
from typing import Callable, List, Optional

from module_source.core.config import Hook, ModuleConfig
from module_source.core.errors import HookError
from module_source.core.options import Options

logger = logging.getLogger(__name__)

HOOK_COMMAND_ENV = "MODULE_SOURCE_COMMAND"


def run_hook(hook: Hook, options: Options) -> None:
    """Run one hook in the operator's working directory.

    Raises:
        HookError: If the hook cannot be started or exits non-zero
    """
    logger.info(f"Executing hook: {hook.name}")
    env = dict(os.environ)
    env[HOOK_COMMAND_ENV] = options.command
    try:
        result = subprocess.run(
            hook.execute,
            cwd=str(options.working_dir),
            env=env,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        raise HookError(f"Hook {hook.name} could not be started: {e}") from e

    if result.stdout.strip():
        logger.info(f"{hook.name}: {result.stdout.strip()}")
    if result.returncode != 0:
        raise HookError(
            f"Hook {hook.name} exited with status {result.returncode}: {result.stderr.strip()}"
        )


def _run_hooks(hooks: List[Hook], options: Options, previous_error: Optional[BaseException]) -> None:
    for hook in hooks:
        if not hook.applies_to(options.command):
            continue
        if previous_error is not None and not hook.run_on_error:
            logger.info(f"Skipping hook {hook.name} because a previous step failed")
            continue
        run_hook(hook, options)


def run_action_with_hooks(
    description: str,
    options: Options,
    config: Optional[ModuleConfig],
    action: Callable[[], None],
) -> None:
    """Run before hooks, the action, then after hooks, for options.command.

    After hooks marked ``run_on_error`` also run when the action failed. The
    first error raised is propagated once all eligible hooks have run.
    """
    config = config or ModuleConfig()

    _run_hooks(config.before_hooks, options, None)

    error: Optional[Exception] = None
    logger.debug(f"Running action: {description}")
    try:
        action()
    except Exception as e:
        error = e

    try:
        _run_hooks(config.after_hooks, options, error)
    except HookError:
        if error is None:
            raise
        logger.error(f"After hook failed while handling an error in {description}")

    if error is not None:
        raise error
