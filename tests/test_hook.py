from __future__ import annotations

import base64
import json
import time
from typing import Any

import pytest
from jwt import exceptions as jwt_exceptions

from jwks_refresh.errors import ConfigurationError, ErrorReason, SignerMatchError, TokenError
from jwks_refresh.hook import get_token_kid, match_signer_for_token, verify_token
from jwks_refresh.parser import Signer, parse_signers
from jwks_refresh.samples import sign_with_kid
from jwks_refresh.strategy import SignerMatchStrategy


class StaticStrategy(SignerMatchStrategy):
    def __init__(self, signers: dict[str, Signer]) -> None:
        self.signers = signers
        self.calls: list[str] = []

    def match_signer_for_kid(self, kid: str) -> Signer:
        self.calls.append(kid)
        try:
            return self.signers[kid]
        except KeyError:
            raise SignerMatchError(ErrorReason.KID_DOES_NOT_MATCH, kid) from None


@pytest.fixture()
def strategy(rsa_keys) -> StaticStrategy:
    jwks_by_kid, _ = rsa_keys
    return StaticStrategy(dict(parse_signers([jwks_by_kid["id1"]])))


def _payload(**claims: Any) -> dict[str, Any]:
    return {"sub": "user-1", "exp": int(time.time()) + 60, **claims}


def _b64(obj: dict[str, Any]) -> str:
    raw = json.dumps(obj).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def test_get_token_kid(rsa_keys) -> None:
    _, private_keys = rsa_keys
    assert get_token_kid(sign_with_kid(_payload(), private_keys["id1"], "id1")) == "id1"


def test_token_without_kid(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    token = sign_with_kid(_payload(), private_keys["id1"], None)
    with pytest.raises(TokenError) as excinfo:
        match_signer_for_token(token, strategy)
    assert excinfo.value.reason is ErrorReason.NO_KID_IN_TOKEN_HEADER
    assert strategy.calls == []


def test_non_string_kid_is_malformed() -> None:
    token = ".".join([_b64({"alg": "HS256", "kid": 7}), _b64(_payload()), "c2ln"])
    with pytest.raises(TokenError) as excinfo:
        get_token_kid(token)
    assert excinfo.value.reason is ErrorReason.TOKEN_MALFORMED


@pytest.mark.parametrize("token", ["not-a-jwt", "a.b.c", ""])
def test_malformed_token(strategy, token: str) -> None:
    with pytest.raises(TokenError) as excinfo:
        match_signer_for_token(token, strategy)
    assert excinfo.value.reason is ErrorReason.TOKEN_MALFORMED
    assert strategy.calls == []


def test_missing_strategy_is_a_configuration_error(rsa_keys) -> None:
    _, private_keys = rsa_keys
    token = sign_with_kid(_payload(), private_keys["id1"], "id1")
    with pytest.raises(ConfigurationError) as excinfo:
        verify_token(token, None)
    assert excinfo.value.reason is ErrorReason.NO_STRATEGY


def test_verify_token(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    header, payload = verify_token(sign_with_kid(_payload(), private_keys["id1"], "id1"), strategy)
    assert header["kid"] == "id1"
    assert header["alg"] == "RS256"
    assert payload["sub"] == "user-1"
    assert strategy.calls == ["id1"]


def test_verify_token_unknown_kid(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    with pytest.raises(SignerMatchError) as excinfo:
        verify_token(sign_with_kid(_payload(), private_keys["id2"], "id2"), strategy)
    assert excinfo.value.reason is ErrorReason.KID_DOES_NOT_MATCH


def test_wrong_key_under_known_kid_fails_signature(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    forged = sign_with_kid(_payload(), private_keys["id2"], "id1")
    with pytest.raises(jwt_exceptions.InvalidSignatureError):
        verify_token(forged, strategy)


def test_signer_algorithm_is_enforced(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    token = sign_with_kid(_payload(), private_keys["id1"], "id1", alg="RS512")
    with pytest.raises(jwt_exceptions.InvalidAlgorithmError):
        verify_token(token, strategy)


def test_decode_options_are_passed_to_pyjwt(rsa_keys, strategy) -> None:
    _, private_keys = rsa_keys
    token = sign_with_kid(_payload(aud="api"), private_keys["id1"], "id1")
    _, payload = verify_token(token, strategy, audience="api")
    assert payload["aud"] == "api"
    with pytest.raises(jwt_exceptions.InvalidAudienceError):
        verify_token(token, strategy, audience="other")
