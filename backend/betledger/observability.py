"""Logfire observability initialization and instrumentation."""

import logging

import logfire

from betledger import __version__
from betledger.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> None:
    """
    Initialize Logfire tracing for the ledger.

    Call once at startup, before any store or feed client is created.

    Instruments:
    - HTTPX clients (outcome feed requests)
    - SQLAlchemy engines (ledger database)
    - Python logging (bridged to Logfire)
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="betledger",
            service_version=__version__,
            environment=settings.environment,
        )

        logfire.instrument_httpx()

        try:
            logfire.instrument_sqlalchemy()
        except Exception as sqlalchemy_error:
            logger.debug(f"SQLAlchemy instrumentation skipped: {sqlalchemy_error}")

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire tracking initialized")

    except Exception as e:
        # Observability is optional
        logger.warning(f"Failed to initialize Logfire: {e}")
