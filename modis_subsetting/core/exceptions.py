"""
Error kinds raised by the MODIS subsetting workflow.

Fatal errors (ConfigError, ToolchainError) abort the run before any I/O.
The remaining kinds are scoped to one (variable, year) pair and stage; the
workflow driver records them and moves on to the next pair.
"""

from typing import Optional, Sequence


class ModisSubsettingError(Exception):
    """Base class for all workflow errors."""


class ConfigError(ModisSubsettingError):
    """
    Invalid or missing run configuration.

    Args:
        field: Name of the offending configuration field
        message: Human readable description
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class ToolchainError(ModisSubsettingError):
    """The external toolchain cannot run the workflow (missing tool or driver)."""


class StageError(ModisSubsettingError):
    """Failure of one stage for one (variable, year) pair."""

    def __init__(self, message: str, variable: Optional[str] = None, year: Optional[int] = None):
        self.variable = variable
        self.year = year
        super().__init__(message)


class DiscoveryWarning(StageError):
    """No usable granules or subdatasets for a (variable, year) pair."""


class ToolInvocationError(StageError):
    """
    An external tool exited with a non-zero status or timed out.

    Attributes:
        command: Argument list that was executed
        returncode: Exit status, None when the process did not finish
        stderr: Tail of the captured standard error
    """

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int],
        stderr: str = "",
        variable: Optional[str] = None,
        year: Optional[int] = None,
        timed_out: bool = False
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        tool = self.command[0] if self.command else "<empty command>"
        if timed_out:
            message = f"{tool} timed out"
        elif returncode is None:
            message = f"{tool} could not be started"
        else:
            message = f"{tool} exited with code {returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message, variable, year)


class OutputWriteError(StageError):
    """A destination directory or file cannot be written."""
