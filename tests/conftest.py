from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from jwks_refresh import telemetry
from jwks_refresh.samples import build_jwks


class JWKSIssuer:
    """A local JWKS endpoint whose response can be changed between requests."""

    def __init__(self) -> None:
        self.status = 200
        self.document: Any = {"keys": []}
        self.raw_body: bytes | None = None
        self.content_type = "application/json"
        self.requests = 0
        self._lock = threading.Lock()
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self.url = ""

    def serve(self, document: Any, status: int = 200) -> None:
        self.document = document
        self.status = status
        self.raw_body = None

    def _record_request(self) -> None:
        with self._lock:
            self.requests += 1

    def start(self) -> None:
        issuer = self

        class JWKSHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802 - http handler API
                issuer._record_request()
                if issuer.raw_body is not None:
                    body = issuer.raw_body
                else:
                    body = json.dumps(issuer.document).encode("utf-8")
                self.send_response(issuer.status)
                self.send_header("Content-Type", issuer.content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, _fmt: str, *_args: object) -> None:
                return

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), JWKSHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        host, port = self._server.server_address[:2]
        host_text = host.decode("ascii") if isinstance(host, bytes) else host
        self.url = f"http://{host_text}:{port}/jwks"

    def close(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)


@pytest.fixture()
def issuer() -> Iterator[JWKSIssuer]:
    server = JWKSIssuer()
    server.start()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture(scope="session")
def rsa_keys() -> tuple[dict[str, Any], dict[str, Any]]:
    """JWKS entries and private keys for id1, id2, id3 (RSA keys are slow to make)."""
    jwks, private_keys = build_jwks(["id1", "id2", "id3"])
    jwks_by_kid = {jwk["kid"]: jwk for jwk in jwks["keys"]}
    return jwks_by_kid, private_keys


@pytest.fixture()
def events() -> Iterator[list[tuple[tuple[str, ...], dict[str, Any], dict[str, Any]]]]:
    received: list[tuple[tuple[str, ...], dict[str, Any], dict[str, Any]]] = []
    lock = threading.Lock()

    def _handler(event: Any, measurements: Any, metadata: Any, _config: Any) -> None:
        with lock:
            received.append((event, measurements, metadata))

    telemetry.attach_many("test-events", telemetry.ALL_EVENTS, _handler)
    try:
        yield received
    finally:
        telemetry.detach("test-events")


@pytest.fixture()
def second_issuer() -> Iterator[JWKSIssuer]:
    server = JWKSIssuer()
    server.start()
    try:
        yield server
    finally:
        server.close()
