"""In-process observability events.

Handlers are attached under a unique id to one or more event names (tuples
of strings) and are called synchronously as
``handler(event, measurements, metadata, config)``. A handler that raises is
logged and detached so that it can never break the code emitting events.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

Event = tuple[str, ...]
Handler = Callable[[Event, dict[str, Any], dict[str, Any], Any], None]

HTTP_FETCH_START: Event = ("jwks_refresh", "http_fetcher", "start")
HTTP_FETCH_STOP: Event = ("jwks_refresh", "http_fetcher", "stop")
HTTP_FETCH_EXCEPTION: Event = ("jwks_refresh", "http_fetcher", "exception")
HTTP_REQUEST: Event = ("jwks_refresh", "http_fetcher", "request")
STRATEGY_REFETCH: Event = ("jwks_refresh", "default_strategy", "refetch")
STRATEGY_SIGNERS: Event = ("jwks_refresh", "default_strategy", "signers")

ALL_EVENTS: tuple[Event, ...] = (
    HTTP_FETCH_START,
    HTTP_FETCH_STOP,
    HTTP_FETCH_EXCEPTION,
    HTTP_REQUEST,
    STRATEGY_REFETCH,
    STRATEGY_SIGNERS,
)

DEFAULT_LOGGER_ID = "jwks-refresh-default-logger"

_lock = threading.Lock()
# handler id -> (events, handler, config); replaced wholesale on every change
_handlers: dict[str, tuple[frozenset[Event], Handler, Any]] = {}


def attach_many(handler_id: str, events: Iterable[Event], handler: Handler, config: Any = None) -> None:
    global _handlers
    with _lock:
        if handler_id in _handlers:
            raise ValueError(f"handler already attached: {handler_id}")
        updated = dict(_handlers)
        updated[handler_id] = (frozenset(tuple(e) for e in events), handler, config)
        _handlers = updated


def attach(handler_id: str, event: Event, handler: Handler, config: Any = None) -> None:
    attach_many(handler_id, [event], handler, config)


def detach(handler_id: str) -> bool:
    global _handlers
    with _lock:
        if handler_id not in _handlers:
            return False
        updated = dict(_handlers)
        del updated[handler_id]
        _handlers = updated
        return True


def execute(
    event: Event,
    measurements: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    measurements = measurements or {}
    metadata = metadata or {}
    for handler_id, (events, handler, config) in list(_handlers.items()):
        if event not in events:
            continue
        try:
            handler(event, measurements, metadata, config)
        except Exception:
            logger.exception("telemetry handler %s failed; detaching it", handler_id)
            detach(handler_id)


@contextmanager
def span(prefix: Event, metadata: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
    """Emit ``prefix + ("start",)`` then ``("stop",)`` or ``("exception",)``.

    The yielded dict is merged into the stop metadata, so callers can report
    the outcome (``result``) of the wrapped work.
    """
    meta = dict(metadata or {})
    started = time.monotonic()
    execute(prefix + ("start",), {"system_time": time.time()}, meta)
    stop_meta: dict[str, Any] = {}
    try:
        yield stop_meta
    except BaseException as exc:
        execute(
            prefix + ("exception",),
            {"duration": time.monotonic() - started},
            {**meta, "kind": type(exc).__name__, "reason": str(exc)},
        )
        raise
    execute(prefix + ("stop",), {"duration": time.monotonic() - started}, {**meta, **stop_meta})


def _log_event(event: Event, measurements: dict[str, Any], metadata: dict[str, Any], level: Any) -> None:
    name = ".".join(event[1:])
    outcome = event[-1]
    if outcome in {"exception", "error"} or metadata.get("error"):
        logger.warning("error in %s: %s %s", name, measurements, metadata)
    elif outcome in {"stop", "signers"}:
        logger.log(level, "success in %s: %s %s", name, measurements, metadata)
    else:
        logger.debug("%s: %s %s", name, measurements, metadata)


def attach_default_logger(level: int = logging.INFO) -> None:
    """Log every library event through :mod:`logging` (idempotent)."""
    try:
        attach_many(DEFAULT_LOGGER_ID, ALL_EVENTS, _log_event, level)
    except ValueError:
        pass
