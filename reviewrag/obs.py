"""OpenTelemetry span helper.

The pipeline wraps its stages (retrieve, build prompt, generate) in ``span`` so any
exporter configured on the global tracer provider sees them. A console exporter can be
enabled with OTEL_CONSOLE_EXPORT for local debugging; otherwise spans go to whatever
provider the host process installed (a no-op provider by default).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from reviewrag.config import Settings

_otel_inited: bool = False


def init_tracing(settings: Settings) -> None:
    """Install a console-exporting tracer provider once, if enabled in settings."""
    global _otel_inited
    if _otel_inited or not settings.OTEL_CONSOLE_EXPORT:
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)
    _otel_inited = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
    """Open a current span named ``name`` with primitive-valued attributes."""
    tracer = trace.get_tracer("reviewrag")
    attrs = {k: v for k, v in (attributes or {}).items() if isinstance(v, (str, bool, int, float))}
    with tracer.start_as_current_span(name, attributes=attrs) as current:
        yield current
