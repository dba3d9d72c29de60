"""
Logging layer shared by the pipeline executor, the observers and the
recipes.

Functions and classes in the package that need to report a condition
without aborting an invocation (a failing observer hook, a stream
released after cancellation) take a `LoggerBase` object. The concrete
loggers delegate to Python's logging module, except `LoglistLogger`,
which keeps the messages in memory so that they can be inspected by
the caller (this is what the tests use).

Usage:
    ```python
    from lmpipe.utils.logging import (
        get_logger,
        ConsoleLogger,
        FileLogger,
        LoglistLogger,
    )

    console_logger = ConsoleLogger(__name__)
    file_logger = FileLogger(__name__, "pipeline.log")

    # collect messages instead of printing them
    logger = LoglistLogger()
    pipeline = compose(stage_a, stage_b, logger=logger)
    ...
    warnings = logger.get_logs(level=1)
    ```
"""

import logging
import sys
from pathlib import Path
from abc import ABC, abstractmethod

LOG_FORMAT = '%(levelname)s - %(message)s'
FILE_LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class LoggerBase(ABC):
    """
    Abstract interface for logging functionality.
    """

    @abstractmethod
    def set_level(self, level: int) -> None:
        """Set the logging level for the logger."""
        pass

    @abstractmethod
    def get_level(self) -> int:
        """Get the current logging level"""
        pass

    @abstractmethod
    def debug(self, msg: str) -> None:
        """Log a debug message."""
        pass

    @abstractmethod
    def info(self, msg: str) -> None:
        """Log an informational message."""
        pass

    @abstractmethod
    def warning(self, msg: str) -> None:
        """Log a warning message."""
        pass

    @abstractmethod
    def error(self, msg: str) -> None:
        """Log an error message."""
        pass

    @abstractmethod
    def critical(self, msg: str) -> None:
        """Log a critical message."""
        pass


class _DelegateLogger(LoggerBase):
    # Forwards all calls to a logging.Logger held in self.logger
    logger: logging.Logger

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def get_level(self) -> int:
        return self.logger.level

    def debug(self, msg: str) -> None:
        self.logger.debug(msg)

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def critical(self, msg: str) -> None:
        self.logger.critical(msg, stack_info=True)


class ConsoleLogger(_DelegateLogger):
    """
    A console logger implementation that uses logging.Logger as a
    delegate. Logs messages to stdout.
    """

    def __init__(self, name: str | None = None) -> None:
        """
        Initialize the ConsoleLogger with a specific logger name,
        typically __name__ to use the module name
        """
        self.logger = logging.getLogger(name or None)
        self.logger.setLevel(logging.INFO)

        # Ensure we have a console handler if none exists
        if not self.logger.hasHandlers():
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)


class FileLogger(_DelegateLogger):
    """
    A file logger implementation that uses logging.Logger as a
    delegate. Logs messages to a specified file.
    """

    def __init__(
        self, name: str = "", log_file: str | Path = "lmpipe.log"
    ) -> None:
        """
        Initialize the FileLogger with a specific logger name and
        file path.

        Args:
            name: The name of the logger, typically __name__ to use
                the module name
            log_file: Path to the log file where messages will be
                written
        """
        self.logger = logging.getLogger(f"{name}_file")
        self.logger.setLevel(logging.INFO)

        # Clear any existing handlers to avoid duplicates
        self.logger.handlers.clear()

        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter(FILE_LOG_FORMAT, DATE_FORMAT)
        )
        self.logger.addHandler(handler)
        self.logger.propagate = False


class FileConsoleLogger(FileLogger):
    """
    A file logger that relays the messages to the console as well.
    """

    def __init__(
        self, name: str = "", log_file: str | Path = "lmpipe.log"
    ) -> None:
        super().__init__(name, log_file)
        self.console_logger: LoggerBase = ConsoleLogger(name)

    def set_level(self, level: int) -> None:
        super().set_level(level)
        self.console_logger.set_level(level)

    def debug(self, msg: str) -> None:
        super().debug(msg)
        self.console_logger.debug(msg)

    def info(self, msg: str) -> None:
        super().info(msg)
        self.console_logger.info(msg)

    def warning(self, msg: str) -> None:
        super().warning(msg)
        self.console_logger.warning(msg)

    def error(self, msg: str) -> None:
        super().error(msg)
        self.console_logger.error(msg)

    def critical(self, msg: str) -> None:
        super().critical(msg)
        self.console_logger.critical(msg)


class LoglistLogger(LoggerBase):
    """
    Maintains a list of logged messages that can be inspected by the
    object creator.
    """

    def __init__(self) -> None:
        self.logs: list[dict[str, str]] = []

    def set_level(self, level: int) -> None:
        pass

    def get_level(self) -> int:
        return 0

    def debug(self, msg: str) -> None:
        self.logs.append({'debug': msg})

    def info(self, msg: str) -> None:
        self.logs.append({'info': msg})

    def warning(self, msg: str) -> None:
        self.logs.append({'warning': msg})

    def error(self, msg: str) -> None:
        self.logs.append({'error': msg})

    def critical(self, msg: str) -> None:
        self.logs.append({'critical': msg})

    def get_logs(self, level: int = 0) -> list[str]:
        """
        Returns a list of strings with the log messages.

        Args:
           level: a filter on the logs. Possible values:
                0 or less: returns all messages
                1: omit debug and info
                2: omit warnings as well
                3 or more: only errors and critical
        """
        logs: list[str] = []
        for entry in self.logs:
            match entry:
                case {'debug': msg}:
                    if level < 1:
                        logs.append("DEBUG - " + msg)
                case {'info': msg}:
                    if level < 1:
                        logs.append("INFO - " + msg)
                case {'warning': msg}:
                    if level < 2:
                        logs.append("WARNING - " + msg)
                case {'error': msg}:
                    logs.append("ERROR - " + msg)
                case {'critical': msg}:
                    logs.append("CRITICAL - " + msg)
                case _:
                    logs.append(str(entry))
        return logs

    def count_logs(self, level: int = 0) -> int:
        """The number of recorded logs. Zero means there
        were no recorded logs."""
        return len(self.get_logs(level))

    def clear_logs(self) -> None:
        """Clear the logs from the cache"""
        self.logs.clear()

    def print_logs(self, level: int = 0) -> None:
        for log in self.get_logs(level):
            print(log)


class ExceptionConsoleLogger(ConsoleLogger):
    """
    A console logger that raises exceptions on error and critical
    calls. The message is still logged before the exception is
    raised. Useful to stop at the first reported error while
    debugging a pipeline.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(f"{name}_exception")

    def error(self, msg: str) -> None:
        self.logger.error(msg)
        raise RuntimeError(f"Error: {msg}")

    def critical(self, msg: str) -> None:
        self.logger.critical(msg)
        raise RuntimeError(f"Critical error: {msg}")


def get_logger(name: str) -> LoggerBase:
    """
    Get a logger with the specified name.

    Args:
        name: The name of the logger, typically __name__ to use the
            module name

    Returns:
        A configured logger instance
    """
    return ConsoleLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the log level of the package loggers.

    Args:
        level: The logging level (e.g., logging.DEBUG, or 'DEBUG')
    """
    # each package logger carries its own level
    for name in ["lmpipe", *logging.root.manager.loggerDict]:
        if name == "lmpipe" or name.startswith("lmpipe."):
            logging.getLogger(name).setLevel(level)
