"""End-to-end smoke run against a local issuer that rotates in a new key.

Starts a strategy with a short poll interval, checks that an unknown kid is
rejected, publishes the key, and checks it becomes verifiable one tick later.
Also drives the CLI ``verify`` sub-command against the same issuer.
"""

from __future__ import annotations

import json
import subprocess
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from jwks_refresh.errors import ErrorReason, SignerMatchError
from jwks_refresh.hook import verify_token
from jwks_refresh.samples import build_jwks, sign_with_kid
from jwks_refresh.strategy import DefaultStrategy


def main() -> int:
    jwks, private_keys = build_jwks(["smoke-k1", "smoke-k2", "smoke-k3"])
    published: dict[str, Any] = {"keys": jwks["keys"][:2]}

    class IssuerHandler(BaseHTTPRequestHandler):
        def log_message(self, fmt: str, *args: Any) -> None:
            return

        def do_GET(self) -> None:  # noqa: N802
            if self.path == "/jwks":
                body = json.dumps(published).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "application/jwk-set+json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)
                return
            self.send_response(404)
            self.end_headers()

    issuer = ThreadingHTTPServer(("127.0.0.1", 0), IssuerHandler)
    issuer_thread = threading.Thread(target=issuer.serve_forever, daemon=True)
    issuer_thread.start()
    issuer_host, issuer_port = issuer.server_address[:2]
    host_text = issuer_host.decode("ascii") if isinstance(issuer_host, bytes) else issuer_host
    jwks_url = f"http://{host_text}:{issuer_port}/jwks"

    payload = {"sub": "smoke-user", "exp": int(time.time()) + 60}
    token = sign_with_kid(payload, private_keys["smoke-k3"], "smoke-k3")
    strategy = DefaultStrategy("smoke", jwks_url=jwks_url, time_interval=200, first_fetch_sync=True)
    try:
        with strategy:
            try:
                verify_token(token, strategy)
            except SignerMatchError as exc:
                if exc.reason is not ErrorReason.KID_DOES_NOT_MATCH:
                    raise
            else:
                raise RuntimeError("expected kid_does_not_match before rotation")

            published["keys"] = jwks["keys"]
            time.sleep(0.5)
            _, claims = verify_token(token, strategy)
            if claims.get("sub") != "smoke-user":
                raise RuntimeError(f"unexpected claims: {claims}")

        proc = subprocess.run(
            [sys.executable, "-m", "jwks_refresh", "verify", "--jwks-url", jwks_url, "--token", token],
            check=False,
            capture_output=True,
            text=True,
        )
        if proc.returncode != 0 or json.loads(proc.stdout).get("kid") != "smoke-k3":
            raise RuntimeError(f"CLI verify failed: {proc.returncode} {proc.stderr}")
    finally:
        issuer.shutdown()
        issuer.server_close()
        issuer_thread.join(timeout=5)

    print("ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
