"""
Error tracking for the progression service.

Errors go to GlitchTip, which speaks the Sentry protocol, so the stock
sentry-sdk client is used. Without a DSN everything here is a no-op.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from src.config.settings import settings

# Connection noise that clears up on its own
_TRANSIENT_MESSAGES = ("connection refused", "connection reset", "broken pipe")

# Optimistic-concurrency and transport outcomes the service already handles
_EXPECTED_ERRORS = ("StaleVersion", "TransportUnavailable", "AssignmentNotFound", "CommandNotAllowed")


def init_observability() -> None:
    """Initialize GlitchTip/Sentry observability."""
    if not settings.GLITCHTIP_DSN:
        print("[Observability] Disabled - no DSN configured")
        return

    if settings.is_development:
        traces_sample_rate = profiles_sample_rate = 1.0
    else:
        traces_sample_rate = settings.GLITCHTIP_TRACES_SAMPLE_RATE
        profiles_sample_rate = settings.GLITCHTIP_PROFILES_SAMPLE_RATE

    sentry_sdk.init(
        dsn=settings.GLITCHTIP_DSN,
        environment=settings.APP_ENV,
        release=f"coachboard-progression@{settings.APP_VERSION}",
        traces_sample_rate=traces_sample_rate,
        profiles_sample_rate=profiles_sample_rate,
        send_default_pii=False,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        before_send=_before_send,
    )

    print(f"[Observability] Initialized for {settings.APP_ENV} (sync={settings.SYNC_TRANSPORT})")


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop events that are not actionable."""
    if "exc_info" not in hint:
        return event

    exc_type, exc_value, _ = hint["exc_info"]
    if exc_type is not None and exc_type.__name__ in _EXPECTED_ERRORS:
        return None
    if any(msg in str(exc_value).lower() for msg in _TRANSIENT_MESSAGES):
        return None
    return event


def capture_exception(
    exception: Exception,
    extra: dict | None = None,
    tags: dict[str, str] | None = None,
) -> str | None:
    """Report an exception with optional tags and extra context."""
    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)
