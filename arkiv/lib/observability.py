"""Observability facade over Pydantic Logfire.

Everything here is a no-op until ``configure()`` has run with logfire enabled
and installed (``pip install arkiv[logfire]``), so call sites never need to
check.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from arkiv.config import Settings

logger = logging.getLogger(__name__)

_logfire = None
_configured = False


def is_available() -> bool:
    return _logfire is not None and _configured


def configure(settings: Settings) -> bool:
    """Initialize logfire from ``settings.logfire``. Returns True when active."""
    global _logfire, _configured

    if not settings.logfire.enabled:
        return False

    try:
        import logfire as lf
    except ImportError:
        logger.warning("logfire is enabled in configuration but not installed")
        return False

    kwargs: dict[str, Any] = {
        "service_name": settings.logfire.service_name,
        "send_to_logfire": "if-token-present",
    }
    if settings.logfire.environment:
        kwargs["environment"] = settings.logfire.environment
    if settings.logfire.sample_rate != 1.0:
        kwargs["trace_sample_rate"] = settings.logfire.sample_rate
    if settings.logfire.console:
        kwargs["console"] = lf.ConsoleOptions()

    lf.configure(**kwargs)
    _logfire = lf
    _configured = True
    return True


def instrument_app(app):
    """Wrap an ASGI app with logfire instrumentation, or return it unchanged."""
    if not is_available():
        return app
    return _logfire.instrument_asgi(app)


def instrument_sqlalchemy(engine) -> None:
    if is_available():
        _logfire.instrument_sqlalchemy(engine=engine)


@contextmanager
def span(name: str, **attrs: Any):
    """Open a logfire span, or yield None when logfire is inactive."""
    if is_available():
        with _logfire.span(name, **attrs) as s:
            yield s
    else:
        yield None


def info(msg: str, **kwargs: Any) -> None:
    if is_available():
        _logfire.info(msg, **kwargs)


def exception(msg: str, **kwargs: Any) -> bool:
    """Record an exception with traceback. Returns False when logfire is inactive."""
    if is_available():
        _logfire.exception(msg, **kwargs)
        return True
    return False
