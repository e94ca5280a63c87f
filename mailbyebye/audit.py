"""
Audit logging.

Every decision, prompt and remote call outcome goes through AuditLog so
the run leaves a timestamped trail on disk as well as on the console.
"""
import logging
import os
from datetime import datetime

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOGGER_NAME = "mailbyebye"
CONSOLE_FORMAT = "%(asctime)s %(levelname)7s %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

LEVELS = {
    "INFO": logging.INFO,
    "SUCCESS": SUCCESS,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logging(verbose=False):
    """Console logging for the whole process."""
    logging.basicConfig(
        format=CONSOLE_FORMAT,
        level=logging.DEBUG if verbose else logging.INFO,
    )
    return logging.getLogger(LOGGER_NAME)


def log_file_path(log_dir, now=None):
    now = now or datetime.now()
    return os.path.join(log_dir, f"mailbyebye_{now.strftime('%Y%m%d_%H%M%S')}.log")


class AuditLog:
    """Append-only audit trail over a stdlib logger."""

    def __init__(self, log_dir=None, logger=None):
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.path = None
        self._handler = None
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            self.path = log_file_path(log_dir)
            self._handler = logging.FileHandler(self.path, encoding="utf-8")
            self._handler.setFormatter(logging.Formatter(FILE_FORMAT))
            self._handler.setLevel(logging.INFO)
            self.logger.addHandler(self._handler)
            if self.logger.level == logging.NOTSET or self.logger.level > logging.INFO:
                self.logger.setLevel(logging.INFO)

    def append(self, level, message, *args):
        if level not in LEVELS:
            raise ValueError(f"Unknown audit level: {level!r}")
        self.logger.log(LEVELS[level], message, *args)

    def info(self, message, *args):
        self.append("INFO", message, *args)

    def success(self, message, *args):
        self.append("SUCCESS", message, *args)

    def warning(self, message, *args):
        self.append("WARNING", message, *args)

    def error(self, message, *args):
        self.append("ERROR", message, *args)

    def debug(self, message, *args):
        # Not an audit entry; console detail for -v only
        self.logger.debug(message, *args)

    def close(self):
        if self._handler:
            self.logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
