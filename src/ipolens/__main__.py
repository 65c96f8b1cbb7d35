"""Main entry point for the IPO Lens application.

Handles:
- Signal handling for graceful shutdown
- Logging setup from configuration
"""

import signal
import sys
from typing import NoReturn

from ipolens.cli import app
from ipolens.core.config import get_config
from ipolens.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def signal_handler(signum: int, frame) -> None:
    """Handle shutdown signals gracefully.

    Args:
        signum: Signal number
        frame: Current stack frame
    """
    logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
    sys.exit(0)


def main() -> NoReturn:
    """Main entry point with signal handling."""
    settings = get_config().logging
    configure_logging(settings.level, settings.format)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        app()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
        sys.exit(0)

    sys.exit(0)


if __name__ == "__main__":
    main()
