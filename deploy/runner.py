"""
Runs external commands for the deployment steps
"""

import logging
import os
import shlex
import subprocess
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from deploy.errors import CommandError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandRunner:
    """
    Thin wrapper over subprocess that logs every command

    In dry-run mode commands are logged but not started, and every call
    returns an empty successful result.
    """

    def __init__(self, dry_run: bool = False, env: Optional[dict] = None):
        self.dry_run = dry_run
        self.env = env

    def run(self, args: Sequence[str], cwd: Optional[str] = None, check: bool = True,
            capture: bool = False, input_text: Optional[str] = None,
            env: Optional[dict] = None) -> subprocess.CompletedProcess:
        """
        Run a command

        Args:
            args: Command and arguments
            cwd: Working directory
            check: Raise CommandError on a non-zero exit
            capture: Capture stdout/stderr instead of streaming them
            input_text: Text passed on stdin
            env: Extra environment variables for this command

        Returns:
            The completed process

        Raises:
            CommandError: The command failed and check is set
        """
        args = [str(arg) for arg in args]
        command_line = shlex.join(args)

        if self.dry_run:
            logger.info("[dry-run] %s", command_line)
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        logger.debug("Running: %s", command_line)
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                env=self._environment(env),
                input=input_text,
                text=True,
                capture_output=capture,
            )
        except FileNotFoundError as exc:
            raise CommandError(args, 127, str(exc)) from exc

        if check and result.returncode != 0:
            raise CommandError(args, result.returncode, result.stderr or "")
        return result

    def _environment(self, extra: Optional[dict]) -> Optional[dict]:
        if not self.env and not extra:
            return None
        return {**os.environ, **(self.env or {}), **(extra or {})}

    def output(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        """Run a command and return its stripped stdout"""
        result = self.run(args, cwd=cwd, capture=True)
        return (result.stdout or "").strip()

    def succeeds(self, args: Sequence[str], cwd: Optional[str] = None) -> bool:
        """Run a command and report whether it exited cleanly"""
        return self.run(args, cwd=cwd, check=False, capture=True).returncode == 0


def retry_with_backoff(func: Callable[[], T], max_retries: int = 3, initial_delay: float = 1.0,
                       sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Retry a function with exponential backoff

    Args:
        func: Function to retry
        max_retries: Maximum number of retries
        initial_delay: Initial delay in seconds
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of the function call

    Raises:
        Exception: Last exception if all retries fail
    """
    delay = initial_delay
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return func()
        except Exception as e:
            last_exception = e
            if attempt < max_retries:
                logger.warning("Attempt %d failed, retrying in %ss: %s", attempt + 1, delay, e)
                sleep(delay)
                delay *= 2
            else:
                logger.error("All %d attempts failed", max_retries + 1)

    raise last_exception


def missing_tools(tools: List[str], which: Callable[[str], Optional[str]]) -> List[str]:
    """Names from tools that which() cannot find"""
    return [tool for tool in tools if which(tool) is None]
