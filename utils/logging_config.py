import logging
import os
from logging import CRITICAL, DEBUG, ERROR, INFO, WARNING, Formatter, StreamHandler, getLogger
from logging.handlers import RotatingFileHandler

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s (%(filename)s:%(lineno)d)"


class ColourFormatter(Formatter):
    """Console formatter with one colour per log level."""

    LEVEL_COLOURS = [
        (DEBUG, "\x1b[40;1m"),
        (INFO, "\x1b[34;1m"),
        (WARNING, "\x1b[33;1m"),
        (ERROR, "\x1b[31m"),
        (CRITICAL, "\x1b[41m"),
    ]

    FORMATS = {
        level: Formatter(
            f"\x1b[30;1m%(asctime)s\x1b[0m {colour}%(levelname)-8s\x1b[0m "
            f"\x1b[35m%(name)s\x1b[0m %(message)s",
            "%H:%M:%S",
        )
        for level, colour in LEVEL_COLOURS
    }

    def format(self, record):
        formatter = self.FORMATS.get(record.levelno, self.FORMATS[DEBUG])
        return formatter.format(record)


class FileFormatter(Formatter):
    """Plain formatter for log files and non-tty consumers."""

    def __init__(self):
        super().__init__(PLAIN_FORMAT, "%Y-%m-%d %H:%M:%S")


def _running_under_systemd() -> bool:
    return os.environ.get("JOURNAL_STREAM") is not None or os.environ.get("INVOCATION_ID") is not None


def setup_logging(level="INFO", log_to_file=False, log_file_path="logs/ai_drawing.log",
                  max_file_size=5 * 1024 * 1024, backup_count=3):
    """
    Configure the root logger for the CLI.

    Args:
        level (str): Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file (bool): Also write to a rotating log file
        log_file_path (str): Where the log file lives
        max_file_size (int): Rotate once the file reaches this many bytes
        backup_count (int): Rotated files to keep

    Returns:
        logging.Logger: The root logger
    """
    console_handler = StreamHandler()
    if _running_under_systemd():
        console_handler.setFormatter(FileFormatter())
    else:
        console_handler.setFormatter(ColourFormatter())

    handlers = [console_handler]

    if log_to_file:
        log_dir = os.path.dirname(log_file_path)
        try:
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file_path,
                maxBytes=max_file_size,
                backupCount=backup_count,
            )
            file_handler.setFormatter(FileFormatter())
            handlers.append(file_handler)
        except OSError as e:
            # Console logging still works without the file
            print(f"Warning: Could not set up file logging: {e}")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    # httpx logs every request at INFO, which drowns out the stream output
    getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger()


def get_logger(name=None):
    """
    Get a module logger.

    Args:
        name (str): Logger name, normally ``__name__``

    Returns:
        logging.Logger: Logger inheriting the root configuration
    """
    return getLogger(name)
