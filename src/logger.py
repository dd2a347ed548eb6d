"""Logger configuration module for the chunked JSON reader.

Every record is one JSON object. Parse failures carry ``json_line`` and
``json_column`` extra fields; chunk loads are logged at debug level with the
number of buffered bytes.

Classes:
    LogManager: Builds the application logger and its handlers.
"""

import logging
import logging.handlers
import os
from typing import Iterator

from pythonjsonlogger import json

LOG_FORMAT = "%(asctime)s %(levelname)s %(module)s %(funcName)s %(lineno)s %(message)s"

RENAMED_FIELDS = {
    "asctime": "timestamp",
    "levelname": "level",
    "funcName": "function",
    "lineno": "line",
}


class LogManager:
    """Builds the application logger.

    Attributes:
        logger (logging.Logger): Configured logger instance.
        log_file (str): Path of the rotated log file.
        formatter (json.JsonFormatter): Formatter shared by all handlers.
    """

    logger: logging.Logger
    log_file: str
    formatter: json.JsonFormatter

    def __init__(
        self,
        app_name: str,
        log_dir: str,
        level: int = logging.INFO,
        max_size: int = 5 * 1024 * 1024,  # 5MB
        backup_count: int = 3,
        development: bool = False,
    ) -> None:
        """
        Args:
            app_name: Logger name, stamped on every record as ``app``.
            log_dir: Directory of ``{app_name}.log``, created if missing.
            level: Logging level (default: logging.INFO).
            max_size: Size in bytes after which the log file is rotated.
            backup_count: Number of rotated files to keep.
            development: Also log to stderr.

        Raises:
            AssertionError: If log_dir is empty.
            OSError: If the log directory cannot be created.
        """
        assert log_dir, "log_dir is required"

        log_dir = os.path.expanduser(log_dir)
        try:
            os.makedirs(log_dir, mode=0o755, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create log directory: {e}")

        self.log_file = os.path.join(log_dir, f"{app_name}.log")
        self.formatter = json.JsonFormatter(
            fmt=LOG_FORMAT,
            rename_fields=RENAMED_FIELDS,
            static_fields={"app": app_name},
        )

        self.logger = logging.getLogger(app_name)
        self.logger.setLevel(level)

        # one set of handlers per logger name, however many managers exist
        if self.logger.handlers:
            return
        for handler in self._handlers(max_size, backup_count, development):
            handler.setFormatter(self.formatter)
            self.logger.addHandler(handler)

    def _handlers(
        self, max_size: int, backup_count: int, development: bool
    ) -> Iterator[logging.Handler]:
        # file is only created on the first record
        yield logging.handlers.RotatingFileHandler(
            self.log_file, maxBytes=max_size, backupCount=backup_count, delay=True
        )
        if development:
            yield logging.StreamHandler()
