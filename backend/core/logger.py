import os
import sys
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_LEVELS = ["debug", "info", "warning", "error", "critical"]

def setup_logging():
    """Configure root, uvicorn and fastapi loggers from LOG_LEVEL / LOG_COLOR"""
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    if log_level not in LOG_LEVELS:
        print(f"[Logger] Invalid LOG_LEVEL '{log_level}', defaulting to INFO")
        log_level = "info"

    level = getattr(logging, log_level.upper())

    # colours only make sense on an interactive terminal
    use_color = os.getenv("LOG_COLOR", "auto").lower()
    if use_color == "auto":
        colored = sys.stdout.isatty()
    else:
        colored = use_color == "true"
    formatter_class = ColorFormatter if colored else logging.Formatter
    formatter = formatter_class(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [console_handler]

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        framework_logger = logging.getLogger(logger_name)
        framework_logger.setLevel(level)
        framework_logger.handlers = [console_handler]
        framework_logger.propagate = False

    # the search client logs every request at INFO
    logging.getLogger("elastic_transport").setLevel(max(level, logging.WARNING))

    print(f"[Logger] Initialized ({log_level.upper()} mode, color={colored})")

class Logger:
    def __init__(self, name: str = "churn"):
        self.logger = logging.getLogger(name)

    def debug(self, msg, *args, **kwargs):
        self.logger.debug(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.logger.info(msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.logger.warning(msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.logger.error(msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self.logger.exception(msg, *args, **kwargs)

class ColorFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        message = super().format(record)
        return f"{color}{message}{self.RESET}"
