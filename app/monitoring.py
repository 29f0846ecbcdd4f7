"""
Monitoring and error tracking configuration.

Sentry is enabled only when SENTRY_DSN is set; the capture helpers are
safe to call either way.
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import settings

logger = logging.getLogger(__name__)

_sentry_enabled = False


def setup_sentry() -> bool:
    """
    Initialize Sentry for error tracking if DSN is configured.

    Returns:
        True when Sentry was initialized
    """
    global _sentry_enabled

    if not settings.sentry_dsn:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        traces_sample_rate=0.1 if settings.environment == "production" else 1.0,
        release=f"etherith-archive@{settings.environment}",
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )
    _sentry_enabled = True
    logger.info(f"Sentry initialized for environment: {settings.environment}")
    return True


def capture_exception(error: Exception, context: Optional[dict] = None) -> None:
    """
    Capture exception in Sentry if configured.

    Args:
        error: Exception to capture
        context: Additional context to include
    """
    if not _sentry_enabled:
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(error)


def capture_message(message: str, level: str = "info", context: Optional[dict] = None) -> None:
    """
    Capture message in Sentry if configured.

    Used for operator-facing events such as orphaned content uploads.
    """
    if not _sentry_enabled:
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)
