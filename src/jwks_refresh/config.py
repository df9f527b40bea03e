from __future__ import annotations

import os
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from .errors import ConfigurationError, ErrorReason

DEFAULT_TIME_INTERVAL_MS = 60_000
DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY_MS = 500
DEFAULT_HTTP_TIMEOUT = 5.0
DEFAULT_ENV_PREFIX = "JWKS_REFRESH_"

LOG_LEVELS = ("none", "debug", "info", "warning", "error")

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def is_http_url(url: str) -> bool:
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    delay: float = DEFAULT_RETRY_DELAY_MS / 1000
    timeout: float = DEFAULT_HTTP_TIMEOUT

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(ErrorReason.INVALID_OPTION, "max_retries must be >= 0")
        if self.delay < 0:
            raise ConfigurationError(ErrorReason.INVALID_OPTION, "delay must be >= 0")
        if self.timeout <= 0:
            raise ConfigurationError(ErrorReason.INVALID_OPTION, "timeout must be > 0")


@dataclass(frozen=True)
class StrategyConfig:
    jwks_url: str
    name: str = "default"
    time_interval: int = DEFAULT_TIME_INTERVAL_MS
    should_start: bool = True
    first_fetch_sync: bool = False
    explicit_alg: str | None = None
    http_max_retries_per_fetch: int = DEFAULT_MAX_RETRIES
    http_delay_per_retry: int = DEFAULT_RETRY_DELAY_MS
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = "debug"
    telemetry_prefix: str | None = None
    transport: Callable[[str, float], tuple[int, bytes]] | None = field(
        default=None, repr=False, compare=False
    )
    retry_policy: RetryPolicy = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.jwks_url, str) or not self.jwks_url.strip():
            raise ConfigurationError(ErrorReason.NO_JWKS_URL, "No url set for fetching JWKS!")
        if not is_http_url(self.jwks_url):
            raise ConfigurationError(
                ErrorReason.INVALID_OPTION, f"jwks_url must be an http(s) URL, got {self.jwks_url!r}"
            )
        if self.transport is not None and not callable(self.transport):
            raise ConfigurationError(ErrorReason.INVALID_OPTION, "transport must be callable")
        if not isinstance(self.time_interval, int) or self.time_interval <= 0:
            raise ConfigurationError(
                ErrorReason.INVALID_OPTION, "time_interval must be a positive integer (ms)"
            )
        if self.explicit_alg is not None and not isinstance(self.explicit_alg, str):
            raise ConfigurationError(ErrorReason.INVALID_OPTION, "explicit_alg must be a string")
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                ErrorReason.INVALID_OPTION,
                f"log_level must be one of: {', '.join(LOG_LEVELS)}",
            )
        try:
            policy = RetryPolicy(
                max_retries=int(self.http_max_retries_per_fetch),
                delay=int(self.http_delay_per_retry) / 1000,
                timeout=float(self.http_timeout),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(ErrorReason.INVALID_OPTION, str(exc)) from exc
        object.__setattr__(self, "retry_policy", policy)

    @property
    def interval_seconds(self) -> float:
        return self.time_interval / 1000

    @property
    def event_prefix(self) -> str:
        return self.telemetry_prefix or self.name

    @classmethod
    def option_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls) if f.init)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> StrategyConfig:
        known = cls.option_names()
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(
                ErrorReason.INVALID_OPTION, f"unknown option(s): {', '.join(unknown)}"
            )
        # None means "not set" so that defaults apply, the same way as an absent key.
        cleaned = {k: v for k, v in options.items() if v is not None}
        if "jwks_url" not in cleaned:
            raise ConfigurationError(ErrorReason.NO_JWKS_URL, "No url set for fetching JWKS!")
        return cls(**cleaned)


def resolve_options(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge option layers; later layers win, ``None`` values never override."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is not None:
                merged[key] = value
    return merged


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(ErrorReason.INVALID_OPTION, f"{name} must be a boolean, got {raw!r}")


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(
            ErrorReason.INVALID_OPTION, f"{name} must be an integer, got {raw!r}"
        ) from None


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigurationError(
            ErrorReason.INVALID_OPTION, f"{name} must be a number, got {raw!r}"
        ) from None


_ENV_PARSERS = {
    "jwks_url": lambda _name, raw: raw.strip(),
    "time_interval": _parse_int,
    "should_start": _parse_bool,
    "first_fetch_sync": _parse_bool,
    "explicit_alg": lambda _name, raw: raw.strip() or None,
    "http_max_retries_per_fetch": _parse_int,
    "http_delay_per_retry": _parse_int,
    "http_timeout": _parse_float,
    "log_level": lambda _name, raw: raw.strip().lower(),
    "telemetry_prefix": lambda _name, raw: raw.strip() or None,
}


def options_from_env(
    prefix: str = DEFAULT_ENV_PREFIX, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Read strategy options from ``<PREFIX><OPTION>`` environment variables.

    ``prefix`` is usually per strategy, e.g. ``JWKS_REFRESH_TENANT_A_``.
    """
    env = os.environ if environ is None else environ
    options: dict[str, Any] = {}
    for option, parser in _ENV_PARSERS.items():
        var = f"{prefix}{option.upper()}"
        raw = env.get(var)
        if raw is None:
            continue
        options[option] = parser(var, raw)
    return options
