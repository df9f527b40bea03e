from __future__ import annotations

import json
import socket
import threading
import time
from typing import Any

import pytest

from jwks_refresh import telemetry
from jwks_refresh.config import RetryPolicy
from jwks_refresh.errors import ErrorReason, FetchError
from jwks_refresh.http_fetcher import TransportError, fetch_signers

_NO_RETRY = RetryPolicy(max_retries=0, delay=0, timeout=2.0)


def _closed_port_url() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = int(sock.getsockname()[1])
    return f"http://127.0.0.1:{port}/jwks"


def _reason(url: str, policy: RetryPolicy = _NO_RETRY, **kwargs: Any) -> ErrorReason:
    with pytest.raises(FetchError) as excinfo:
        fetch_signers(url, policy, **kwargs)
    return excinfo.value.reason


def test_fetch_returns_raw_keys(issuer, rsa_keys) -> None:
    jwks_by_kid, _ = rsa_keys
    issuer.serve({"keys": [jwks_by_kid["id1"], jwks_by_kid["id2"]]})

    keys = fetch_signers(issuer.url, _NO_RETRY)

    assert [key["kid"] for key in keys] == ["id1", "id2"]
    assert issuer.requests == 1


def test_fetch_accepts_jwk_set_content_type(issuer) -> None:
    issuer.content_type = "application/jwk-set+json"
    issuer.serve({"keys": []})
    assert fetch_signers(issuer.url, _NO_RETRY) == []


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (400, ErrorReason.JWKS_CLIENT_HTTP_ERROR),
        (404, ErrorReason.JWKS_CLIENT_HTTP_ERROR),
        (499, ErrorReason.JWKS_CLIENT_HTTP_ERROR),
        (500, ErrorReason.JWKS_SERVER_HTTP_ERROR),
        (503, ErrorReason.JWKS_SERVER_HTTP_ERROR),
        (202, ErrorReason.STATUS_NOT_200),
    ],
)
def test_http_status_classification(issuer, status: int, expected: ErrorReason) -> None:
    issuer.serve({"keys": []}, status=status)
    assert _reason(issuer.url) is expected


def test_http_errors_are_not_retried(issuer) -> None:
    issuer.serve({}, status=500)
    policy = RetryPolicy(max_retries=5, delay=0, timeout=2.0)
    assert _reason(issuer.url, policy) is ErrorReason.JWKS_SERVER_HTTP_ERROR
    assert issuer.requests == 1


def test_missing_keys_field(issuer) -> None:
    issuer.serve({"not_keys": []})
    assert _reason(issuer.url) is ErrorReason.NO_KEYS_ON_RESPONSE


def test_keys_must_be_a_list(issuer) -> None:
    issuer.serve({"keys": {"kid": "id1"}})
    assert _reason(issuer.url) is ErrorReason.NO_KEYS_ON_RESPONSE


def test_invalid_json_body(issuer) -> None:
    issuer.raw_body = b"<html>not json</html>"
    assert _reason(issuer.url) is ErrorReason.NO_KEYS_ON_RESPONSE


def test_unreachable_url() -> None:
    assert _reason(_closed_port_url()) is ErrorReason.COULD_NOT_REACH_JWKS_URL


def test_non_http_url_is_rejected() -> None:
    assert _reason("file:///etc/passwd") is ErrorReason.COULD_NOT_REACH_JWKS_URL


def test_transport_failures_are_retried_up_to_budget() -> None:
    attempts: list[int] = []

    def _count(_event: Any, _measurements: Any, metadata: Any, _config: Any) -> None:
        attempts.append(metadata["attempt"])

    telemetry.attach("count-attempts", telemetry.HTTP_REQUEST, _count)
    try:
        policy = RetryPolicy(max_retries=3, delay=0.01, timeout=1.0)
        assert _reason(_closed_port_url(), policy) is ErrorReason.COULD_NOT_REACH_JWKS_URL
    finally:
        telemetry.detach("count-attempts")
    assert attempts == [0, 1, 2, 3]


def test_retry_delay_is_applied() -> None:
    policy = RetryPolicy(max_retries=2, delay=0.1, timeout=1.0)
    started = time.monotonic()
    _reason(_closed_port_url(), policy)
    assert time.monotonic() - started >= 0.2


def test_cancel_abandons_retries() -> None:
    cancel = threading.Event()
    cancel.set()
    policy = RetryPolicy(max_retries=10, delay=5.0, timeout=1.0)
    started = time.monotonic()
    assert _reason(_closed_port_url(), policy, cancel=cancel) is ErrorReason.COULD_NOT_REACH_JWKS_URL
    assert time.monotonic() - started < 4.0


def test_fetch_emits_start_and_stop_events(issuer, events) -> None:
    issuer.serve({"keys": []})
    fetch_signers(issuer.url, _NO_RETRY, telemetry_prefix="tenant-a")

    names = [event for event, _, _ in events]
    assert telemetry.HTTP_FETCH_START in names
    assert telemetry.HTTP_FETCH_STOP in names
    _, measurements, metadata = next(e for e in events if e[0] == telemetry.HTTP_FETCH_STOP)
    assert measurements["duration"] >= 0
    assert metadata["result"] == "ok"
    assert metadata["url"] == issuer.url
    assert metadata["telemetry_prefix"] == "tenant-a"


def test_fetch_failure_reports_error_on_stop_event(issuer, events) -> None:
    issuer.serve({}, status=503)
    _reason(issuer.url)

    _, _, metadata = next(e for e in events if e[0] == telemetry.HTTP_FETCH_STOP)
    assert metadata["result"] == "error"
    assert metadata["error"] == "jwks_server_http_error"


def test_non_ascii_url_is_a_fetch_error(issuer) -> None:
    issuer.serve({"keys": []})
    assert _reason(issuer.url + "/café") is ErrorReason.COULD_NOT_REACH_JWKS_URL
    assert issuer.requests == 0


def test_injected_transport_replaces_urllib() -> None:
    calls: list[tuple[str, float]] = []

    def transport(url: str, timeout: float) -> tuple[int, bytes]:
        calls.append((url, timeout))
        return 200, json.dumps({"keys": [{"kid": "k1"}]}).encode()

    keys = fetch_signers("https://idp.example/jwks", _NO_RETRY, transport=transport)

    assert keys == [{"kid": "k1"}]
    assert calls == [("https://idp.example/jwks", 2.0)]


def test_injected_transport_failures_are_retried() -> None:
    outcomes: list[Any] = [TransportError("reset"), TransportError("timeout"), (200, b'{"keys": []}')]

    def transport(_url: str, _timeout: float) -> tuple[int, bytes]:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    policy = RetryPolicy(max_retries=2, delay=0, timeout=1.0)
    assert fetch_signers("https://idp.example/jwks", policy, transport=transport) == []
    assert outcomes == []


def test_injected_transport_status_is_classified() -> None:
    def transport(_url: str, _timeout: float) -> tuple[int, bytes]:
        return 404, b"not found"

    policy = RetryPolicy(max_retries=3, delay=0, timeout=1.0)
    assert _reason("https://idp.example/jwks", policy, transport=transport) is ErrorReason.JWKS_CLIENT_HTTP_ERROR
