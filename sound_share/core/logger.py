"""
Logging configuration for sound-share.

This module sets up the logging system with multiple outputs:
    - Console: Colored, compact messages written through tqdm.write() so
      they do not break progress bars
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - user_notices.log: Messages that block a user-initiated action
      (failed friend add, failed review save, ...)

User notices are also kept in memory on a notice board so the CLI can
show them as dismissable notifications after a command finishes.

Usage:
    from sound_share.core.logger import setup_logging, get_logger

    setup_logging(log_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Friend request sent")
    log_user_notice(logger, "Could not add friend", "Network unreachable")
"""

import itertools
import logging
import logging.handlers
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TextIO

import colorama
from colorama import Fore, Style
from tqdm import tqdm


LOG_FULL_FILENAME = "log_full.log"
LOG_ERRORS_FILENAME = "log_errors.log"
USER_NOTICES_FILENAME = "user_notices.log"

# Rotation for the full log (the only file that grows quickly)
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that adds colors to console output.

    Colors:
        - DEBUG: Cyan
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bright Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return f"{record.levelname}: {record.getMessage()}"
        color = self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        return f"{color}{record.levelname}{Style.RESET_ALL}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    tqdm.write() prints above any active bar and redraws it afterwards.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


@dataclass(frozen=True)
class UserNotice:
    """
    A dismissable notification for the user.

    Attributes:
        notice_id: Monotonic id, used to dismiss the notice.
        title: Short headline ("Could not add friend").
        message: Detail text.
        level: Logging level name of the originating record.
        created_at: Local timestamp.
    """
    notice_id: int
    title: str
    message: str
    level: str
    created_at: datetime


class NoticeBoard:
    """
    Thread-safe, in-memory list of pending user notices.

    Notices stay pending until dismissed. The board is process-wide and
    filled by UserNoticeHandler.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._notices: dict[int, UserNotice] = {}

    def post(self, title: str, message: str, level: str = "WARNING") -> UserNotice:
        with self._lock:
            notice = UserNotice(
                notice_id=next(self._ids),
                title=title,
                message=message,
                level=level,
                created_at=datetime.now(),
            )
            self._notices[notice.notice_id] = notice
            return notice

    def pending(self) -> list[UserNotice]:
        with self._lock:
            return sorted(self._notices.values(), key=lambda n: n.notice_id)

    def dismiss(self, notice_id: int) -> bool:
        """Dismiss one notice. Returns False if it was not pending."""
        with self._lock:
            return self._notices.pop(notice_id, None) is not None

    def dismiss_all(self) -> int:
        with self._lock:
            count = len(self._notices)
            self._notices.clear()
            return count


_notice_board = NoticeBoard()


def get_notice_board() -> NoticeBoard:
    """Return the process-wide notice board."""
    return _notice_board


class UserNoticeHandler(logging.Handler):
    """
    Handler that turns records carrying the 'user_notice' extra into notices.

    Only records created through log_user_notice() (or with the same extra
    fields) are captured; everything else is ignored. Each notice is posted
    to the NoticeBoard and, when a report path is given, appended to
    user_notices.log:

        2024-05-01 12:00:00 | WARNING | Could not add friend
            Network unreachable

    Attributes:
        board: NoticeBoard receiving the notices.
        report_path: Optional log file path.
        report_file: Open file handle (opened by open()).
    """

    def __init__(self, board: NoticeBoard, report_path: Path | None = None) -> None:
        super().__init__()
        self.board = board
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file in append mode (no-op without a path)."""
        if self.report_path is not None:
            self.report_file = open(self.report_path, "a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not getattr(record, "user_notice", False):
            return

        try:
            title = getattr(record, "user_notice_title", None) or record.getMessage()
            detail = getattr(record, "user_notice_detail", "") or ""
            notice = self.board.post(title, detail, record.levelname)

            if self.report_file is not None:
                stamp = notice.created_at.strftime(FILE_DATE_FORMAT)
                self.report_file.write(f"{stamp} | {notice.level} | {notice.title}\n")
                if detail:
                    self.report_file.write(f"    {detail}\n")
                self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL records through."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(
    log_dir: Path | None,
    console_level: str = "INFO",
    use_colors: bool = True
) -> None:
    """
    Configure the logging system for the application.

    Call ONCE at application startup, after the configuration is loaded.

    Args:
        log_dir: Directory where log files are created. None disables
                 every file handler (console and notice board only).
        console_level: Level name for console output.
        use_colors: Colorize console level names (colorama).

    Behavior:
        1. Create log_dir if it doesn't exist
        2. Set root logger level to DEBUG and drop existing handlers
        3. Console handler (TqdmLoggingHandler + ColoredConsoleFormatter)
        4. Rotating full log file handler (DEBUG)
        5. Error-only log file handler (ErrorOnlyFilter)
        6. UserNoticeHandler feeding the notice board and user_notices.log
    """
    colorama.init()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter(use_colors=use_colors))
    root_logger.addHandler(console_handler)

    notice_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        full_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FULL_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        full_handler.setLevel(logging.DEBUG)
        full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        root_logger.addHandler(full_handler)

        error_handler = logging.FileHandler(
            log_dir / LOG_ERRORS_FILENAME, mode="a", encoding="utf-8"
        )
        error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
        error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        error_handler.addFilter(ErrorOnlyFilter())
        root_logger.addHandler(error_handler)

        notice_path = log_dir / USER_NOTICES_FILENAME

    notice_handler = UserNoticeHandler(get_notice_board(), notice_path)
    notice_handler.open()
    root_logger.addHandler(notice_handler)

    # urllib3 is chatty at DEBUG; keep it out of the full log
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().
    """
    return logging.getLogger(name)


def log_user_notice(
    logger: logging.Logger,
    title: str,
    detail: str = "",
    level: int = logging.WARNING
) -> None:
    """
    Log a message that must reach the user as a dismissable notice.

    Use for failures that block a user-initiated action (review save,
    friend add). Benign conditions should be plain INFO logs instead.

    Example:
        log_user_notice(
            logger,
            "Could not approve friend request",
            "Network unreachable. The friendship may be incomplete."
        )
    """
    message = f"{title}: {detail}" if detail else title
    logger.log(
        level,
        message,
        extra={
            "user_notice": True,
            "user_notice_title": title,
            "user_notice_detail": detail,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close every root handler.

    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
