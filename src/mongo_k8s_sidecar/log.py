import logging
import re
import sys


# ANSI color codes for logging
class Colors:
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    MAGENTA = '\033[95m'
    CYAN = '\033[96m'
    WHITE = '\033[97m'
    BOLD = '\033[1m'
    RESET = '\033[0m'


LEVEL_COLORS = {
    'DEBUG': Colors.CYAN,
    'INFO': Colors.GREEN,
    'WARNING': Colors.YELLOW,
    'ERROR': Colors.RED,
    'CRITICAL': Colors.RED + Colors.BOLD,
}

# replSetGetStatus stateStr values, colored by how worried an operator should be
MEMBER_STATE_COLORS = {
    'PRIMARY': Colors.BOLD + Colors.MAGENTA,
    'SECONDARY': Colors.CYAN,
    'ARBITER': Colors.CYAN,
    'STARTUP': Colors.YELLOW,
    'STARTUP2': Colors.YELLOW,
    'RECOVERING': Colors.YELLOW,
    'ROLLBACK': Colors.YELLOW,
    'UNKNOWN': Colors.RED,
    'DOWN': Colors.RED,
    'REMOVED': Colors.RED,
}

MEMBER_STATE_PATTERN = re.compile(r'\b(' + '|'.join(sorted(MEMBER_STATE_COLORS, key=len, reverse=True)) + r')\b')
# member addresses: stable pod DNS names or pod IPs, with an optional port
ADDRESS_PATTERN = re.compile(
    r'\b(?:[\w-]+\.[\w-]+\.[\w-]+\.svc\.[\w.-]*[\w-]|(?:[0-9]{1,3}\.){3}[0-9]{1,3})(?::\d+)?\b'
)


class ColoredFormatter(logging.Formatter):
    """Colors log levels, replica set member states and member addresses."""

    def format(self, record):
        message = super().format(record)

        level_color = LEVEL_COLORS.get(record.levelname, Colors.WHITE)
        message = message.replace(record.levelname, f"{level_color}{record.levelname}{Colors.RESET}", 1)

        message = ADDRESS_PATTERN.sub(lambda m: f"{Colors.YELLOW}{m.group(0)}{Colors.RESET}", message)
        message = MEMBER_STATE_PATTERN.sub(
            lambda m: f"{MEMBER_STATE_COLORS[m.group(1)]}{m.group(1)}{Colors.RESET}", message)
        return message.replace("ReplicaSet", f"{Colors.BOLD}ReplicaSet{Colors.RESET}")


def setup_logging(debug=False, stream=None):
    """
    Configure the root logger with a single colored console handler.

    :param debug: log at DEBUG level instead of INFO.
    :param stream: output stream, stdout by default.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(ColoredFormatter(
        fmt='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    # Kubernetes API and driver chatter stays out of the sidecar output
    for noisy in ("urllib3", "kubernetes", "pymongo"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
