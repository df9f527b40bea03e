from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any

import jwt
from jwt.algorithms import get_default_algorithms

from .errors import ErrorReason, ParseError

logger = logging.getLogger(__name__)

KeySet = Mapping[str, "Signer"]


@dataclass(frozen=True)
class Signer:
    """A verification key for one ``(kid, alg)`` pair, ready for ``jwt.decode``."""

    kid: str
    alg: str
    jwk: Mapping[str, Any] = field(repr=False, compare=False)
    key: Any = field(repr=False, compare=False)

    @property
    def kty(self) -> str | None:
        kty = self.jwk.get("kty")
        return kty if isinstance(kty, str) else None


@lru_cache(maxsize=1)
def supported_algorithms() -> frozenset[str]:
    """JWS algorithms the installed PyJWT (and cryptography) can verify."""
    return frozenset(alg for alg in get_default_algorithms() if alg != "none")


def _resolve_algorithm(jwk_alg: Any, explicit_alg: str | None) -> str:
    # "alg" is optional in a JWK (RFC 7517 section 4.4), so an explicit one may
    # be configured; when both exist the configured one wins.
    if isinstance(explicit_alg, str):
        return explicit_alg
    if jwk_alg is None:
        raise ParseError(ErrorReason.NO_ALGORITHM_SUPPLIED)
    if isinstance(jwk_alg, str):
        return jwk_alg
    raise ParseError(ErrorReason.BAD_ALGORITHM, f"alg must be a string, got {jwk_alg!r}")


def _build_signer(kid: str, alg: str, jwk: dict[str, Any]) -> Signer:
    try:
        key = jwt.PyJWK(jwk, algorithm=alg).key
    except Exception as exc:
        logger.error(
            "Error while parsing a key entry fetched from the network.\n\n"
            "This should be investigated by a human.\n\n"
            "Key: %r\n\nError: %r",
            jwk,
            exc,
        )
        raise ParseError(ErrorReason.INVALID_KEY_PARAMS, str(exc)) from exc
    return Signer(kid=kid, alg=alg, jwk=MappingProxyType(dict(jwk)), key=key)


def parse_signers(keys: Iterable[Any], explicit_alg: str | None = None) -> KeySet:
    """Turn raw JWK entries into an immutable ``kid -> Signer`` mapping.

    Encryption keys (``"use": "enc"``) and keys whose algorithm cannot be
    verified here are skipped. A missing or non-string ``kid`` fails the whole
    batch, as does a key that cannot be constructed.
    """
    supported = supported_algorithms()
    signers: dict[str, Signer] = {}
    for entry in keys:
        if not isinstance(entry, dict):
            raise ParseError(ErrorReason.INVALID_KEY_PARAMS, "JWK entry must be an object")
        if entry.get("use") == "enc":
            logger.debug("skipping encryption key %r", entry.get("kid"))
            continue
        kid = entry.get("kid")
        if not isinstance(kid, str):
            raise ParseError(ErrorReason.KID_NOT_BINARY, f"kid must be a string, got {kid!r}")
        alg = _resolve_algorithm(entry.get("alg"), explicit_alg)
        if alg not in supported:
            logger.debug("skipping key %s: not_signing_alg %s", kid, alg)
            continue
        signers[kid] = _build_signer(kid, alg, entry)
    return MappingProxyType(signers)
