"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from matchday import __version__
from matchday.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> bool:
    """
    Initialize Logfire once at startup, before any client is created.

    Instruments:
    - HTTPX clients (Outcome Source and Ledger traffic)
    - Python logging (bridged to Logfire)

    Returns True when tracing is active. Never raises.
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="matchday-settler",
            service_version=__version__,
            environment="paper" if settings.ledger.paper_mode else "live",
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire cloud tracking initialized")
        return True

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False
