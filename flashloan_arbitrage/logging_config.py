"""
Logging configuration for console output.

Usage:
    from flashloan_arbitrage import logging_config
    logging_config.setup()
"""

import logging
import sys


def setup(level=logging.INFO):
    """
    Configure the root logger with a single compact console handler.

    - Uses short timestamps (HH:MM:SS)
    - Quiets HTTP client and web3 provider chatter
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("web3.providers").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.getLogger("flashloan_arbitrage").setLevel(level)


def setup_debug():
    """Verbose logging for debugging, including provider requests."""
    setup(level=logging.DEBUG)
    logging.getLogger("web3.providers").setLevel(logging.DEBUG)
