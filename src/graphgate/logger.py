"""Logging for graphgate with CLI output support."""

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


class GatewayLogger(logging.Logger):
    """
    Logger that combines Python logging with CLI formatting methods.

    Provides the standard logging levels plus a few semantic output methods
    used by the command line (success, hint, key_value, rule).
    """

    def __init__(self, name: str, level: int = logging.INFO) -> None:
        super().__init__(name, level)
        self.console = Console(stderr=True)

        handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self.addHandler(handler)
        self.propagate = False

    def print(self, message: str) -> None:
        """
        Print a plain message (with Rich markup support).

        Args:
            message: Message to display
        """
        self.console.print(message)

    def success(self, message: str) -> None:
        """
        Print a success message in green with checkmark icon.

        Args:
            message: Message to display
        """
        self.print(f"[green]✓[/green] {message}")

    def hint(self, message: str) -> None:
        self.print(f"[dim]{message}[/dim]")

    def rule(self, title: str, style: str = "bold blue") -> None:
        """
        Print a horizontal rule with a title.

        Args:
            title: Title text for the rule
            style: Rich style string (default: "bold blue")
        """
        self.console.rule(f"[{style}]{title}")

    def key_value(self, key: str, value: Any, key_style: str = "dim") -> None:
        """
        Print a formatted key-value pair such as "Query.bookById: book-service".

        Args:
            key: The key/label to display
            value: The value to display
            key_style: Style for the key (default: "dim")
        """
        self.print(f"[{key_style}]{key}:[/{key_style}] {value}")


def get_logger(name: str = "graphgate") -> GatewayLogger:
    """
    Get or create a graphgate logger instance.

    Args:
        name: Logger name (default: "graphgate")

    Returns:
        GatewayLogger instance
    """
    previous_class = logging.getLoggerClass()
    logging.setLoggerClass(GatewayLogger)
    try:
        logger = logging.getLogger(name)
    finally:
        logging.setLoggerClass(previous_class)

    return logger  # type: ignore[return-value]
