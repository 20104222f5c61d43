"""Log handler and OTLP trace export for the board API process."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from featureboard import __version__
from featureboard.core.config import Settings

APP_LOGGER = "featureboard"

# Driver and HTTP client chatter; only shown when the board itself runs at DEBUG.
LIBRARY_LOGGERS = ("httpx", "httpcore", "asyncpg", "opentelemetry")

_provider: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """``OTEL_EXPORTER_OTLP_HEADERS`` style ``k=v,k2=v2``; malformed pairs are dropped."""

    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def build_logging_config(settings: Settings) -> dict[str, Any]:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING

    loggers: dict[str, dict[str, Any]] = {name: {"level": library_level} for name in LIBRARY_LOGGERS}
    loggers[APP_LOGGER] = {"level": level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"board": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "board", "level": level},
        },
        "loggers": loggers,
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    dictConfig(build_logging_config(settings))
    return logging.getLogger(APP_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Start exporting spans over OTLP; a second call reuses the running provider."""

    global _provider

    if not settings.otel_enabled:
        return None
    if _provider is not None:
        return _provider

    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint or None,
        headers=parse_otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans; the next ``init_tracer`` starts a fresh provider."""

    global _provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
