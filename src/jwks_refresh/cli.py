from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from jwt import exceptions as jwt_exceptions

from . import telemetry
from .config import DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_DELAY_MS, RetryPolicy
from .errors import JWKSError
from .hook import get_token_kid, verify_token
from .http_fetcher import fetch_signers
from .parser import parse_signers
from .samples import DEFAULT_SAMPLE_KIDS, generate_sample
from .strategy import DefaultStrategy
from .version import __version__


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _parse_allowlist(values: list[str] | None) -> str | list[str] | None:
    if not values:
        return None
    items: list[str] = []
    for raw in values:
        items.extend(part.strip() for part in str(raw).split(",") if part.strip())
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return items


def _cmd_fetch(args: argparse.Namespace) -> int:
    policy = RetryPolicy(
        max_retries=int(args.max_retries),
        delay=int(args.retry_delay) / 1000,
        timeout=float(args.timeout),
    )
    signers = parse_signers(fetch_signers(args.jwks_url, policy), explicit_alg=args.explicit_alg)
    if not signers:
        print("warning: no valid signers found", file=sys.stderr)
    _print_json(
        {
            "url": args.jwks_url,
            "count": len(signers),
            "signers": [
                {"kid": signer.kid, "alg": signer.alg, "kty": signer.kty}
                for signer in sorted(signers.values(), key=lambda s: s.kid)
            ],
        }
    )
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    token = _load_token(args.token)
    kid = get_token_kid(token)
    strategy = DefaultStrategy(
        "cli",
        jwks_url=args.jwks_url,
        first_fetch_sync=True,
        explicit_alg=args.explicit_alg,
        http_max_retries_per_fetch=int(args.max_retries),
        http_delay_per_retry=int(args.retry_delay),
        http_timeout=float(args.timeout),
    )
    decode_options: dict[str, Any] = {"leeway": int(args.leeway)}
    audience = _parse_allowlist(args.aud)
    if audience is not None:
        decode_options["audience"] = audience
    issuer = _parse_allowlist(args.iss)
    if issuer is not None:
        decode_options["issuer"] = issuer
    with strategy:
        header, payload = verify_token(token, strategy, **decode_options)
    _print_json({"kid": kid, "header": header, "payload": payload})
    return 0


def _cmd_sample(args: argparse.Namespace) -> int:
    kids = args.kid or list(DEFAULT_SAMPLE_KIDS)
    _print_json(generate_sample(kids, alg=str(args.alg), exp_seconds=int(args.exp_seconds)))
    return 0


def _add_http_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--jwks-url", required=True, help="JWKS endpoint (http or https)")
    parser.add_argument(
        "--explicit-alg", help="Algorithm to use for every key (overrides the JWK alg)"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=0,
        help="Retries on connection failures (default: 0)",
    )
    parser.add_argument(
        "--retry-delay",
        type=int,
        default=DEFAULT_RETRY_DELAY_MS,
        help=f"Delay between retries in ms (default: {DEFAULT_RETRY_DELAY_MS})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_HTTP_TIMEOUT,
        help=f"Per-request timeout in seconds (default: {DEFAULT_HTTP_TIMEOUT})",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="jwks-refresh", description="Fetch JWKS signers and verify tokens against them"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log fetch events to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    p_fetch = sub.add_parser("fetch", help="Fetch a JWKS and list the usable signers")
    _add_http_args(p_fetch)
    p_fetch.set_defaults(func=_cmd_fetch)

    p_verify = sub.add_parser("verify", help="Verify a JWT against the signers of a JWKS")
    _add_http_args(p_verify)
    p_verify.add_argument("--token", required=True, help="JWT to verify (use '-' for stdin)")
    p_verify.add_argument(
        "--aud",
        action="append",
        help="Expected audience (repeatable or comma-separated; enables aud claim verification)",
    )
    p_verify.add_argument(
        "--iss",
        action="append",
        help="Expected issuer (repeatable or comma-separated; enables iss claim verification)",
    )
    p_verify.add_argument(
        "--leeway",
        type=int,
        default=0,
        help="Clock skew in seconds when verifying exp/nbf/iat (default: 0)",
    )
    p_verify.set_defaults(func=_cmd_verify)

    p_sample = sub.add_parser("sample", help="Generate a sample JWKS and a token signed by it")
    p_sample.add_argument("--kid", action="append", help="Key id (repeatable)")
    p_sample.add_argument("--alg", default="RS256", help="RS256/384/512, PS*, or ES256/384/512")
    p_sample.add_argument(
        "--exp-seconds", type=int, default=3600, help="Token lifetime (default: 3600)"
    )
    p_sample.set_defaults(func=_cmd_sample)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)
        telemetry.attach_default_logger()
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except (JWKSError, ValueError, jwt_exceptions.PyJWTError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
