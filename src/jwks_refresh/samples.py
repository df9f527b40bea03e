from __future__ import annotations

import json
import time
from collections.abc import Sequence
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt import algorithms

DEFAULT_SAMPLE_KIDS = ("demo-k1", "demo-k2")

_EC_CURVES = {
    "ES256": ec.SECP256R1,
    "ES384": ec.SECP384R1,
    "ES512": ec.SECP521R1,
}


def _private_key_for(alg: str) -> Any:
    if alg.startswith(("RS", "PS")):
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    if alg in _EC_CURVES:
        return ec.generate_private_key(_EC_CURVES[alg]())
    raise ValueError(f"unsupported sample algorithm: {alg}")


def _public_jwk(private_key: Any) -> dict[str, Any]:
    public_key = private_key.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        jwk_any = json.loads(algorithms.RSAAlgorithm.to_jwk(public_key))
    else:
        jwk_any = json.loads(algorithms.ECAlgorithm.to_jwk(public_key))
    if not isinstance(jwk_any, dict):
        raise ValueError("invalid JWK output")
    return jwk_any


def build_key(kid: str, alg: str = "RS256", *, use: str | None = "sig") -> tuple[Any, dict[str, Any]]:
    """Generate a key pair; return the private key and its public JWK."""
    private_key = _private_key_for(alg)
    jwk = _public_jwk(private_key)
    jwk["kid"] = kid
    jwk["alg"] = alg
    if use:
        jwk["use"] = use
    return private_key, jwk


def build_jwks(kids: Sequence[str], alg: str = "RS256") -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(jwks, private_keys_by_kid)`` for freshly generated keys."""
    private_keys: dict[str, Any] = {}
    jwks_keys: list[dict[str, Any]] = []
    for kid in kids:
        private_key, jwk = build_key(kid, alg)
        private_keys[kid] = private_key
        jwks_keys.append(jwk)
    return {"keys": jwks_keys}, private_keys


def sign_with_kid(
    payload: dict[str, Any],
    private_key: Any,
    kid: str | None,
    alg: str = "RS256",
) -> str:
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(payload, key=private_key, algorithm=alg, headers=headers)


def _private_pem(private_key: Any) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def generate_sample(
    kids: Sequence[str] = DEFAULT_SAMPLE_KIDS,
    alg: str = "RS256",
    exp_seconds: int = 3600,
) -> dict[str, Any]:
    if not kids:
        raise ValueError("at least one kid is required")
    jwks, private_keys = build_jwks(kids, alg)
    now = int(time.time())
    payload = {"sub": "demo-user", "iat": now, "exp": now + int(exp_seconds)}
    kid = kids[0]
    return {
        "alg": alg,
        "kid": kid,
        "jwks": jwks,
        "token": sign_with_kid(payload, private_keys[kid], kid, alg),
        "payload": payload,
        "sign_key": {"key_type": "pem", "key_text": _private_pem(private_keys[kid])},
    }
