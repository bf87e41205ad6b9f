import json
import logging
import sys
from datetime import datetime
from colorama import Fore, Style, init

# Initialize colorama for cross-platform colored output
init(autoreset=True)

logger = logging.getLogger("mongo_stream")


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line: date, level, message"""

    def format(self, record):
        line = {
            "date": datetime.fromtimestamp(record.created).strftime("%Y-%m-%dT%H:%M:%S.%f"),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line)


def configure_logging(level="INFO", log_file=None):
    """Send structured log lines to stdout, and optionally mirror them to a file"""
    formatter = StructuredFormatter()
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = False


def log_debug(message):
    logger.debug(message)


def log_info(message):
    logger.info(message)


def log_success(message):
    """Log success message at INFO level"""
    logger.info(f"SUCCESS: {message}")


def log_warning(message):
    logger.warning(message)


def log_error(message):
    logger.error(message)


def log_stage(message):
    """Log stage indicator"""
    logger.info(f"STAGE: {message}")


def print_banner(version):
    """Print the startup banner with blue background"""
    print(f"{Fore.WHITE}{Style.BRIGHT}{Fore.BLUE}Starting mongo-stream:{version}{Style.RESET_ALL}")


def print_summary(results):
    """Print one colored line per collection result"""
    for result in results:
        if result.get("status") == "done":
            print(
                f"{Fore.GREEN}[DONE] {result['collection']}: "
                f"{format_number(result['copied'])} documents in {format_time(result['duration'])}{Style.RESET_ALL}"
            )
        else:
            print(f"{Fore.RED}[FAILED] {result['collection']}: {result.get('error')}{Style.RESET_ALL}")


def format_time(seconds):
    """Format seconds into human-readable time"""
    if seconds < 60:
        return f"{seconds:.1f} seconds"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f} minutes"
    else:
        hours = seconds / 3600
        return f"{hours:.1f} hours"


def format_number(num):
    """Format number with thousands separators"""
    return f"{num:,}"
