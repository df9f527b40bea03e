"""GET a JWKS document and classify the outcome.

Only transport failures (refused connections, timeouts, resets) are retried,
up to ``policy.max_retries`` extra attempts with a fixed delay in between.
An HTTP response of any status is an answer and is never retried.

The GET itself goes through a *transport*: any callable
``(url, timeout) -> (status, body)`` that raises :class:`TransportError` when
no response arrives. The default is :func:`urllib_transport`.
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from typing import Any, cast

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_fixed,
)

from . import telemetry
from .config import RetryPolicy, is_http_url
from .errors import ErrorReason, FetchError

logger = logging.getLogger(__name__)

JWKS_CONTENT_TYPES = ("application/json", "application/jwk-set+json")

_EVENT_PREFIX = ("jwks_refresh", "http_fetcher")


class TransportError(Exception):
    """No HTTP response was received. The only failure that is retried."""


Transport = Callable[[str, float], tuple[int, bytes]]


def urllib_transport(url: str, timeout: float) -> tuple[int, bytes]:
    req = urllib.request.Request(url, headers={"Accept": ", ".join(JWKS_CONTENT_TYPES)})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return int(response.status), response.read()
    except urllib.error.HTTPError as exc:
        # urllib raises for non-2xx; for us that is still an answer from the server.
        try:
            body = exc.read()
        except (OSError, http.client.HTTPException):
            body = b""
        return int(exc.code), body
    except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
        raise TransportError(str(getattr(exc, "reason", exc))) from exc
    except ValueError as exc:
        # Bad port, stray control characters and the like; retrying cannot help.
        raise FetchError(ErrorReason.COULD_NOT_REACH_JWKS_URL, str(exc)) from exc


def _check_url(url: str) -> None:
    if not is_http_url(url):
        raise FetchError(ErrorReason.COULD_NOT_REACH_JWKS_URL, "JWKS url must be http(s)")
    if not url.isascii():
        raise FetchError(
            ErrorReason.COULD_NOT_REACH_JWKS_URL, "JWKS url must be ASCII (percent-encode it)"
        )


def _keys_from_body(body: bytes) -> list[Any]:
    try:
        document = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise FetchError(ErrorReason.NO_KEYS_ON_RESPONSE, "response is not valid JSON") from None
    if not isinstance(document, dict):
        raise FetchError(ErrorReason.NO_KEYS_ON_RESPONSE, "response is not a JSON object")
    keys = document.get("keys")
    if keys is None:
        raise FetchError(ErrorReason.NO_KEYS_ON_RESPONSE)
    if not isinstance(keys, list):
        raise FetchError(ErrorReason.NO_KEYS_ON_RESPONSE, "keys must be a list")
    return cast(list[Any], keys)


def _classify(status: int, body: bytes) -> list[Any]:
    if status == 200:
        return _keys_from_body(body)
    if 400 <= status < 500:
        raise FetchError(ErrorReason.JWKS_CLIENT_HTTP_ERROR, f"status {status}")
    if status >= 500:
        raise FetchError(ErrorReason.JWKS_SERVER_HTTP_ERROR, f"status {status}")
    raise FetchError(ErrorReason.STATUS_NOT_200, f"status {status}")


def _get_with_retries(
    url: str,
    policy: RetryPolicy,
    *,
    transport: Transport,
    cancel: threading.Event | None,
    metadata: dict[str, Any],
) -> tuple[int, bytes]:
    stop = stop_after_attempt(policy.max_retries + 1)
    if cancel is not None:
        stop = stop | stop_when_event_set(cancel)
    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(policy.delay),
        retry=retry_if_exception_type(TransportError),
        sleep=cancel.wait if cancel is not None else time.sleep,
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number - 1
                started = time.monotonic()
                try:
                    status, body = transport(url, policy.timeout)
                except TransportError as exc:
                    telemetry.execute(
                        telemetry.HTTP_REQUEST,
                        {"request_time": time.monotonic() - started},
                        {**metadata, "attempt": number, "error": str(exc)},
                    )
                    raise
                telemetry.execute(
                    telemetry.HTTP_REQUEST,
                    {"request_time": time.monotonic() - started},
                    {**metadata, "attempt": number, "status": status},
                )
                return status, body
    except TransportError as exc:
        raise FetchError(ErrorReason.COULD_NOT_REACH_JWKS_URL, str(exc)) from exc
    raise AssertionError("unreachable")


def fetch_signers(
    url: str,
    policy: RetryPolicy | None = None,
    *,
    transport: Transport | None = None,
    cancel: threading.Event | None = None,
    telemetry_prefix: str | None = None,
) -> list[Any]:
    """Return the raw ``keys`` list served at ``url``.

    Raises :class:`FetchError` for every failure; nothing else escapes.
    ``cancel`` aborts the wait between retries (used when a strategy stops).
    """
    policy = policy or RetryPolicy()
    metadata: dict[str, Any] = {"url": url, "telemetry_prefix": telemetry_prefix}
    failure: FetchError | None = None
    keys: list[Any] = []

    with telemetry.span(_EVENT_PREFIX, metadata) as outcome:
        try:
            _check_url(url)
            status, body = _get_with_retries(
                url,
                policy,
                transport=transport or urllib_transport,
                cancel=cancel,
                metadata=metadata,
            )
            keys = _classify(status, body)
            outcome["result"] = "ok"
            outcome["count"] = len(keys)
        except FetchError as exc:
            failure = exc
            outcome["result"] = "error"
            outcome["error"] = exc.reason.value

    if failure is not None:
        raise failure
    return keys
