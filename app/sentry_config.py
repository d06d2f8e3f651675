"""
Sentry configuration for error tracking.

Captures unhandled exceptions from requests and background tasks.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import settings
from app.logging_config import get_logger


log = get_logger(component="sentry")

# Request fields that may carry inline image data or provider results
SCRUBBED_FIELDS = ("image", "imageUrl", "text", "propertyData")


def configure_sentry():
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        log.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=scrub_event,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    log.info("sentry_initialized", environment=settings.ENVIRONMENT)


def scrub_event(event, hint):
    """
    Drop bulky or user-supplied payload fields before an event is sent.

    Base64 photos easily exceed Sentry's event size limit.
    """
    data = event.get("request", {}).get("data")
    if isinstance(data, dict):
        for field in SCRUBBED_FIELDS:
            if field in data:
                data[field] = "[scrubbed]"
    return event


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)
