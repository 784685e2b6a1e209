"""Error taxonomy for disc imports with user-facing presentation."""

import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console

if TYPE_CHECKING:
    from cdmedia.config import CdmediaConfig

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    HARDWARE = "hardware"
    FILESYSTEM = "filesystem"
    MEDIA = "media"
    EXTERNAL_TOOL = "external_tool"
    SYSTEM = "system"


class CdmediaError(Exception):
    """Base exception for cdmedia with enhanced user experience."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.DEPENDENCY: ("📦", "red"),
            ErrorCategory.HARDWARE: ("🔌", "red"),
            ErrorCategory.FILESYSTEM: ("📁", "red"),
            ErrorCategory.MEDIA: ("💿", "blue"),
            ErrorCategory.EXTERNAL_TOOL: ("🔧", "red"),
            ErrorCategory.SYSTEM: ("💻", "red"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color} bold]{self.category.value.replace('_', ' ').title()} Error[/{color} bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(CdmediaError):
    """Invalid import request or configuration file."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(CdmediaError):
    """Missing or broken dependency errors."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


class LaunchError(CdmediaError):
    """The external reader could not be started."""

    def __init__(self, executable: str, **kwargs):
        self.executable = executable
        message = kwargs.pop("message", f"Could not launch {executable}")
        solution = kwargs.pop(
            "solution",
            f"Check that {executable} is installed and cdrdao_binary points at it",
        )
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )


class ToolFatalError(CdmediaError):
    """The reader reported a condition it cannot recover from."""

    def __init__(self, message: str, **kwargs):
        solution = kwargs.pop(
            "solution",
            "Check the disc is inserted, clean, and not in use by another program",
        )
        super().__init__(message, ErrorCategory.MEDIA, solution=solution, **kwargs)


class UnknownFailure(CdmediaError):
    """The reader exited unsuccessfully without explaining why."""

    def __init__(
        self,
        tool: str,
        exit_code: int | None = None,
        output: str | None = None,
        **kwargs,
    ):
        self.exit_code = exit_code
        message = f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"

        details = kwargs.pop("details", output)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and configured",
        )

        super().__init__(
            message,
            ErrorCategory.EXTERNAL_TOOL,
            details=details,
            solution=solution,
            **kwargs,
        )


class AssemblyFailure(Enum):
    """Why a bundle could not be published."""

    DESTINATION_CONFLICT = "destination_conflict"
    INVALID_LAYOUT = "invalid_layout"
    SIZE_MISMATCH = "size_mismatch"
    IO_ERROR = "io_error"


class AssemblyError(CdmediaError):
    """The ripped output could not be turned into a bundle."""

    def __init__(self, message: str, reason: AssemblyFailure, **kwargs):
        self.reason = reason
        solution = kwargs.pop("solution", None)
        if solution is None and reason is AssemblyFailure.DESTINATION_CONFLICT:
            solution = "Choose another destination or remove the existing bundle"
        elif solution is None and reason is AssemblyFailure.IO_ERROR:
            solution = "Check free disk space and permissions on the destination"
        super().__init__(
            message,
            ErrorCategory.FILESYSTEM,
            solution=solution,
            **kwargs,
        )


class CleanupError(CdmediaError):
    """Partial output could not be removed after a failed import."""

    def __init__(self, leftovers: list[Path], **kwargs):
        self.leftovers = leftovers
        message = f"Could not remove {len(leftovers)} partial import file(s)"
        details = kwargs.pop("details", ", ".join(str(p) for p in leftovers))
        solution = kwargs.pop("solution", "Delete the listed files manually")
        super().__init__(
            message,
            ErrorCategory.FILESYSTEM,
            details=details,
            solution=solution,
            log_level=logging.WARNING,
            **kwargs,
        )


def wrap_error(
    error: Exception,
    *,
    category: ErrorCategory | None = None,
    **kwargs,
) -> CdmediaError:
    """Convert a generic exception to a CdmediaError."""
    if isinstance(error, CdmediaError):
        return error

    if category is None:
        if isinstance(error, FileNotFoundError | PermissionError):
            category = ErrorCategory.FILESYSTEM
        else:
            category = ErrorCategory.SYSTEM

    return CdmediaError(
        message=str(error) or "An unexpected error occurred",
        category=category,
        original_error=error,
        **kwargs,
    )


def check_dependencies(config: "CdmediaConfig") -> list[DependencyError]:
    """Check for missing external tools and return list of errors."""
    errors = []

    if not shutil.which(config.cdrdao_binary):
        errors.append(
            DependencyError(
                "cdrdao",
                solution="Install cdrdao from your package manager (e.g. apt install cdrdao)",
                details=f"'{config.cdrdao_binary}' was not found; cdrdao is required for disc reading",
            ),
        )

    return errors
