"""Observability utilities: logging setup, OpenTelemetry spans and Langfuse traces.

This module centralizes lightweight observability features:
- setup_logging configures the root logger once from settings.LOG_LEVEL.
- span wraps a block in an OpenTelemetry span. A console exporter is attached
  only when OTEL_CONSOLE_EXPORT is set, so by default spans go to whatever
  tracer provider the process already has.
- Trace is a minimal Langfuse trace wrapper that is a no-op unless
  LANGFUSE_HOST, LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY are configured.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from langfuse import Langfuse
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from semantic_retrieval.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)

_langfuse_client: Optional[Langfuse] = None
_otel_inited: bool = False
_logging_inited: bool = False


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once with the service format.

    Args:
        level: Optional level name; defaults to settings.LOG_LEVEL.
    """
    global _logging_inited
    if _logging_inited:
        return
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    _logging_inited = True


def _init_langfuse() -> Optional[Langfuse]:
    """Initialize and memoize a Langfuse client if configuration is present."""
    global _langfuse_client
    if _langfuse_client is not None:
        return _langfuse_client
    if settings.LANGFUSE_HOST and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        _langfuse_client = Langfuse(
            host=settings.LANGFUSE_HOST,
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
        )
    return _langfuse_client


def _init_otel() -> None:
    """Install a console-exporting tracer provider once, when enabled."""
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    if not settings.OTEL_CONSOLE_EXPORT:
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
    """Run a block inside an OpenTelemetry span.

    Exceptions raised in the block are recorded on the span and re-raised.
    """
    _init_otel()
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name, attributes=attributes or {}) as otel_span:
        yield otel_span


class Trace:
    """
    Minimal wrapper for a Langfuse trace with no-op methods if not configured.
    """

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None):
        self.name = name
        self.enabled = False
        self._trace = None
        client = _init_langfuse()
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {})
                self.enabled = True
            except Exception:
                logger.warning("langfuse trace %s could not be created", name, exc_info=True)
                self._trace = None

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Record a structured event on the trace if Langfuse is enabled.

        Args:
            name: Event name.
            data: Optional dictionary payload to store with the event.
        """
        if not self.enabled or self._trace is None:
            return
        try:
            self._trace.event(name=name, input=data or {})
        except Exception:
            logger.debug("langfuse event %s dropped", name, exc_info=True)

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        """Finalize the trace with an optional output payload."""
        if not self.enabled or self._trace is None:
            return
        try:
            self._trace.update(output=output or {})
        except Exception:
            logger.debug("langfuse trace %s could not be finalized", self.name, exc_info=True)
