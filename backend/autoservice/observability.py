import sentry_sdk
import structlog

from autoservice.config import settings

_configured = False


def configure_logging() -> None:
    """Configure structlog (JSON in production, console in development) and Sentry.

    Safe to call more than once; only the first call has an effect.
    """
    global _configured
    if _configured:
        return

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.is_production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(0),
    )

    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=0.1,
            environment=settings.APP_ENV,
            send_default_pii=False,
        )

    _configured = True
    structlog.get_logger().info("autoservice_logging_configured", env=settings.APP_ENV)
