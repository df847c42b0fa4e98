"""
Errors raised by the deployment steps
"""

from typing import List, Sequence


class DeployError(Exception):
    """Base class for failures that abort a deployment command"""


class MissingDependencyError(DeployError):
    """Required command line tools are not installed"""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing dependencies: {' '.join(missing)}")


class CommandError(DeployError):
    """An external command exited with a non-zero status"""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(self.args_list)}"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class StackError(DeployError):
    """A Pulumi Automation API operation failed"""
