from __future__ import annotations

from enum import Enum


class ErrorReason(str, Enum):
    # token header problems, raised before any key lookup
    NO_KID_IN_TOKEN_HEADER = "no_kid_in_token_header"
    TOKEN_MALFORMED = "token_malformed"

    # key lookup
    KID_DOES_NOT_MATCH = "kid_does_not_match"
    NO_SIGNERS_FETCHED = "no_signers_fetched"

    # fetching
    JWKS_CLIENT_HTTP_ERROR = "jwks_client_http_error"
    JWKS_SERVER_HTTP_ERROR = "jwks_server_http_error"
    STATUS_NOT_200 = "status_not_200"
    COULD_NOT_REACH_JWKS_URL = "could_not_reach_jwks_url"
    NO_KEYS_ON_RESPONSE = "no_keys_on_response"

    # parsing
    KID_NOT_BINARY = "kid_not_binary"
    NO_ALGORITHM_SUPPLIED = "no_algorithm_supplied"
    BAD_ALGORITHM = "bad_algorithm"
    INVALID_KEY_PARAMS = "invalid_key_params"

    # configuration / registry
    NO_JWKS_URL = "no_jwks_url"
    INVALID_OPTION = "invalid_option"
    NO_STRATEGY = "no_strategy"
    NOT_FOUND = "not_found"
    ALREADY_STARTED = "already_started"

    def __str__(self) -> str:
        return self.value


class JWKSError(Exception):
    """Base error; ``reason`` is always an :class:`ErrorReason`."""

    def __init__(self, reason: ErrorReason, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class FetchError(JWKSError):
    pass


class ParseError(JWKSError):
    pass


class SignerMatchError(JWKSError):
    pass


class TokenError(JWKSError):
    pass


class ConfigurationError(JWKSError):
    pass


class StrategyNotFoundError(JWKSError, LookupError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(ErrorReason.NOT_FOUND, f"no strategy registered as {name!r}")
