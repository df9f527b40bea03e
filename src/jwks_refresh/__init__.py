from .cache import KeyCache, RefreshState
from .config import RetryPolicy, StrategyConfig
from .errors import (
    ConfigurationError,
    ErrorReason,
    FetchError,
    JWKSError,
    ParseError,
    SignerMatchError,
    StrategyNotFoundError,
    TokenError,
)
from .http_fetcher import TransportError, fetch_signers
from .hook import dynamic_verify_token, get_token_kid, match_signer_for_token, verify_token
from .parser import Signer, parse_signers
from .registry import StrategyRegistry, default_registry
from .strategy import DefaultStrategy, SignerMatchStrategy
from .version import __version__

__all__ = [
    "ConfigurationError",
    "DefaultStrategy",
    "ErrorReason",
    "FetchError",
    "JWKSError",
    "KeyCache",
    "ParseError",
    "RefreshState",
    "RetryPolicy",
    "Signer",
    "SignerMatchError",
    "SignerMatchStrategy",
    "StrategyConfig",
    "StrategyNotFoundError",
    "StrategyRegistry",
    "TokenError",
    "TransportError",
    "__version__",
    "default_registry",
    "dynamic_verify_token",
    "fetch_signers",
    "get_token_kid",
    "match_signer_for_token",
    "parse_signers",
    "verify_token",
]
