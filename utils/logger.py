from logging.handlers import RotatingFileHandler
from datetime import datetime
import logging, os, re, sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%b %d, %Y %H:%M:%S"

_SECRET_PATTERNS = [
    re.compile(r"(sk-[A-Za-z0-9_-]{4})[A-Za-z0-9_-]+"),
    re.compile(r"(\d{6,}:)[A-Za-z0-9_-]{20,}"),
]


def format_time(seconds):
    seconds = int(seconds or 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def redact(value):
    """Mask API keys and bot tokens that may show up in subprocess output."""
    if not isinstance(value, str) or not value:
        return value
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(r"\1***", value)
    return value


def mask_secret(value):
    if not value:
        return ""
    value = str(value)
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def get_logger(name="openclaw-manager", level="INFO", log_file=None):
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=3
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Unable to open log file {log_file}: {e}")

    return logger


class SubprocessLogger:
    """Relays the output of a child process into the manager log."""

    def __init__(self, logger, profile, command):
        self.logger = logger
        self.profile = profile
        self.command = command
        self.started_at = datetime.now()
        self.line_count = 0

    def log_line(self, line):
        self.line_count += 1
        self.logger.debug(f"[{self.profile}] {self.command}: {redact(line)}")

    def finish(self, returncode):
        elapsed = (datetime.now() - self.started_at).total_seconds()
        self.logger.info(
            f"[{self.profile}] {self.command} exited with code {returncode} "
            f"after {format_time(elapsed)} ({self.line_count} lines)"
        )
