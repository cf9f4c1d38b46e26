"""Console logging setup for the archiver CLI."""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(message)s"
DEBUG_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Logger receiving every raw protocol message when wire tracing is on
WIRE_LOGGER = "archiver.intercept.transport.wire"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes", "on")


def configure_logging(verbose: Optional[bool] = None, protocol_trace: Optional[bool] = None) -> None:
    """Configure root logging for command line use.

    Args:
        verbose: Enable debug output. Defaults to the ARCHIVER_DEBUG env var.
        protocol_trace: Log every protocol message. Defaults to the
            ARCHIVER_DEBUG_CDP env var.
    """
    if verbose is None:
        verbose = _env_flag("ARCHIVER_DEBUG")
    if protocol_trace is None:
        protocol_trace = _env_flag("ARCHIVER_DEBUG_CDP")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=DEBUG_LOG_FORMAT if verbose else LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    wire = logging.getLogger(WIRE_LOGGER)
    wire.setLevel(logging.DEBUG if protocol_trace else logging.WARNING)

    # aiohttp and asyncio are noisy at debug level
    for name in ("aiohttp", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
