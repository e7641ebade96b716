"""CLI utility functions for fwflash.

This module provides common utilities used across CLI commands including:
- Error handling and formatting
- Banner formatting for job results
- Streamed output line formatting
"""

import sys

from fwflash.orchestrator.messages import (
    BuildFlashResult,
    JobState,
    OutputEvent,
    OutputStream,
)

STAGE_LABELS = {
    JobState.RESOLVING_ENVIRONMENT: "env",
    JobState.PREPARING_SOURCE: "git",
    JobState.BUILDING: "build",
    JobState.FLASHING: "flash",
}


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        if message:
            print(message)
            print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_permission_error(error: PermissionError) -> None:
        ErrorFormatter.print_error("Error: Permission denied", str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Job cancelled")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class BannerFormatter:
    """Formats banner messages with borders."""

    DEFAULT_WIDTH = 80
    DEFAULT_BORDER_CHAR = "="

    @staticmethod
    def format_banner(
        message: str,
        width: int = DEFAULT_WIDTH,
        border_char: str = DEFAULT_BORDER_CHAR,
        center: bool = True,
    ) -> str:
        """Format a banner message with top and bottom borders.

        Args:
            message: The message to display (can be multi-line)
            width: Width of the banner in characters (default: 80)
            border_char: Character to use for borders (default: "=")
            center: Whether to center text (default: True)

        Returns:
            Formatted banner string with borders
        """
        border = border_char * width
        formatted_lines = [border]
        for line in message.split("\n"):
            if center:
                formatted_lines.append(" " * ((width - len(line)) // 2) + line)
            else:
                formatted_lines.append("  " + line)
        formatted_lines.append(border)
        return "\n".join(formatted_lines)


class ResultFormatter:
    """Renders streamed output and terminal results for the terminal."""

    @staticmethod
    def format_event(event: OutputEvent) -> str:
        """Format one output event as ``[stage] line``.

        Overflow markers and stderr lines are highlighted.
        """
        if event.stream == OutputStream.OVERFLOW:
            return f"{ErrorFormatter.YELLOW}{event.line}{ErrorFormatter.RESET}"
        label = STAGE_LABELS.get(event.stage, "job") if event.stage else "job"
        if event.stream == OutputStream.STDERR:
            return f"[{label}] {ErrorFormatter.YELLOW}{event.line}{ErrorFormatter.RESET}"
        return f"[{label}] {event.line}"

    @staticmethod
    def format_result(result: BuildFlashResult) -> str:
        """Multi-line summary of a job result."""
        if result.success:
            lines = [result.message or "Success"]
        else:
            error = result.error_type.value if result.error_type else "unknown"
            lines = [f"Failed: {error}"]
            if result.message:
                lines.extend(result.message.splitlines())
        if result.firmware_bin_path:
            lines.append(f"Firmware: {result.firmware_bin_path}")
        return "\n".join(lines)
