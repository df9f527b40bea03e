"""Glue between a token and a strategy.

Pulls the ``kid`` out of the (unverified) token header, asks the strategy
for the matching signer and hands signature verification to PyJWT.
"""

from __future__ import annotations

from typing import Any

import jwt
from jwt import exceptions as jwt_exceptions

from .errors import ConfigurationError, ErrorReason, TokenError
from .parser import Signer
from .registry import StrategyRegistry, default_registry
from .strategy import SignerMatchStrategy


def get_token_kid(token: str) -> str:
    try:
        header = jwt.get_unverified_header(token)
    except jwt_exceptions.PyJWTError as exc:
        raise TokenError(ErrorReason.TOKEN_MALFORMED, str(exc)) from exc
    kid = header.get("kid")
    if not isinstance(kid, str):
        raise TokenError(ErrorReason.NO_KID_IN_TOKEN_HEADER)
    return kid


def match_signer_for_token(token: str, strategy: SignerMatchStrategy | None) -> Signer:
    if strategy is None:
        raise ConfigurationError(ErrorReason.NO_STRATEGY, "No strategy provided")
    return strategy.match_signer_for_kid(get_token_kid(token))


def verify_token(
    token: str,
    strategy: SignerMatchStrategy | None,
    **decode_options: Any,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Verify ``token`` with the signer its ``kid`` selects.

    ``decode_options`` go to :func:`jwt.decode` unchanged (``audience``,
    ``issuer``, ``leeway``, ``options``...); PyJWT errors propagate.
    """
    signer = match_signer_for_token(token, strategy)
    header = jwt.get_unverified_header(token)
    payload = jwt.decode(token, key=signer.key, algorithms=[signer.alg], **decode_options)
    return header, payload


def dynamic_verify_token(
    name: str,
    token: str,
    *,
    registry: StrategyRegistry | None = None,
    **decode_options: Any,
) -> tuple[dict[str, Any], dict[str, Any]]:
    strategy = (registry if registry is not None else default_registry).lookup_by_name(name)
    return verify_token(token, strategy, **decode_options)
