"""
Console logger for the monitor.
Colour-coded level prefixes with silent and verbose switches.
"""

import logging
import sys

from colorama import init, Fore, Style

init(autoreset=True)


class ColoredFormatter(logging.Formatter):

    LEVEL_STYLES = {
        logging.DEBUG: (Style.DIM, "[*]"),
        logging.INFO: (Fore.CYAN, "[+]"),
        logging.WARNING: (Fore.YELLOW, "[!]"),
        logging.ERROR: (Fore.RED, "[-]"),
        logging.CRITICAL: (Fore.RED + Style.BRIGHT, "[-]"),
    }

    def format(self, record: logging.LogRecord) -> str:
        color, prefix = self.LEVEL_STYLES.get(record.levelno, ("", "[?]"))
        message = super().format(record)
        return f"{color}{prefix}{Style.RESET_ALL} {message}"


def _build_logger() -> logging.Logger:
    log = logging.getLogger("jsmonitor")
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredFormatter("%(message)s"))
        log.addHandler(handler)
    log.setLevel(logging.INFO)
    log.propagate = False
    return log


logger = _build_logger()


def set_silent(silent: bool = True):
    logger.setLevel(logging.ERROR if silent else logging.INFO)


def set_verbose(verbose: bool = True):
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
