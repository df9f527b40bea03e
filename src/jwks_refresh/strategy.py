from __future__ import annotations

import abc
import logging
import threading
from collections.abc import Mapping
from typing import Any

from . import http_fetcher, telemetry
from .cache import KeyCache
from .config import StrategyConfig, options_from_env, resolve_options
from .errors import ErrorReason, FetchError, ParseError, SignerMatchError
from .parser import KeySet, Signer, parse_signers

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SignerMatchStrategy(abc.ABC):
    """Resolves the key id found in a token header to a :class:`Signer`.

    Called once per verification on request threads, so implementations must
    not block or perform I/O here.
    """

    @abc.abstractmethod
    def match_signer_for_kid(self, kid: str) -> Signer:
        """Return the signer for ``kid`` or raise :class:`SignerMatchError`."""


class DefaultStrategy(SignerMatchStrategy):
    """Keeps a JWKS cache fresh from one background polling thread.

    A lookup miss only flags the cache; the poller sees the flag on its next
    tick (every ``time_interval`` ms) and refetches. However many misses land
    within one interval, the JWKS endpoint sees at most one refresh.

    Options are merged from, in increasing order of precedence, environment
    variables under ``env_prefix`` (if given), keyword arguments, and whatever
    :meth:`init_opts` returns. Subclasses override :meth:`init_opts` to supply
    runtime configuration such as the URL.
    """

    def __init__(
        self,
        name: str = "default",
        *,
        env_prefix: str | None = None,
        **options: Any,
    ) -> None:
        env_options = options_from_env(env_prefix) if env_prefix else {}
        merged = resolve_options(env_options, {"name": name}, options)
        self.config = StrategyConfig.from_options(self.init_opts(merged))
        self.cache = KeyCache()
        self._refresh_lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._started = False

    def init_opts(self, options: dict[str, Any]) -> Mapping[str, Any]:
        return options

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, jwks_url={self.config.jwks_url!r})"

    def __enter__(self) -> DefaultStrategy:
        return self.start()

    def __exit__(self, *_exc: object) -> None:
        self.stop()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _log(self, level: str, msg: str, *args: Any) -> None:
        configured = self.config.log_level
        if configured == "none":
            return
        if _LEVELS[level] < _LEVELS[configured]:
            return
        logger.log(_LEVELS[level], f"[%s] {msg}", self.name, *args)

    def start(self) -> DefaultStrategy:
        if self._stop.is_set():
            raise RuntimeError(f"strategy {self.name!r} was stopped; create a new one")
        if self._started:
            return self
        self._started = True
        if not self.config.should_start:
            self._log("debug", "should_start is false; not fetching signers.")
            return self

        self.cache.mark_refresh_needed()
        if self.config.first_fetch_sync:
            self.refresh()
            first_delay = self.config.interval_seconds
        else:
            # The flag is already set, so a zero first delay makes the poller
            # fetch right away without blocking the caller.
            first_delay = 0.0
        self._thread = threading.Thread(
            target=self._poll,
            args=(first_delay,),
            name=f"jwks-refresh-{self.name}",
            daemon=True,
        )
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        # A poller that outlived the join may still be inside refresh().
        with self._refresh_lock:
            self.cache.clear()

    def _poll(self, first_delay: float) -> None:
        delay = first_delay
        while not self._stop.wait(delay):
            try:
                self.check_fetch()
            except Exception:
                logger.exception("[%s] unexpected error in JWKS poller", self.name)
            delay = self.config.interval_seconds

    def check_fetch(self) -> bool:
        """One poll tick: refresh if a refresh is pending. Returns whether it tried."""
        if not self.cache.needs_refresh():
            self._log("debug", "Re-fetching cache is not needed.")
            return False
        self._log("debug", "Re-fetching cache is needed and will start.")
        telemetry.execute(
            telemetry.STRATEGY_REFETCH,
            {"count": 1},
            {"name": self.name, "telemetry_prefix": self.config.event_prefix},
        )
        self.refresh()
        return True

    def refresh(self) -> bool:
        """Fetch, parse and install a new key set. Returns ``True`` on success.

        On any failure the previous key set stays in place and the cache stays
        flagged, so the next tick tries again.
        """
        with self._refresh_lock:
            try:
                keys = http_fetcher.fetch_signers(
                    self.config.jwks_url,
                    self.config.retry_policy,
                    transport=self.config.transport,
                    cancel=self._stop,
                    telemetry_prefix=self.config.event_prefix,
                )
                signers = parse_signers(keys, explicit_alg=self.config.explicit_alg)
            except (FetchError, ParseError) as exc:
                self._log("error", "Failed to fetch signers. Reason: %s", exc)
                self.cache.mark_refresh_needed()
                return False
            except Exception:
                logger.exception("[%s] Unexpected error while fetching signers.", self.name)
                self.cache.mark_refresh_needed()
                return False

            if self._stop.is_set():
                return False
            self._install(signers)
            return True

    def _install(self, signers: KeySet) -> None:
        if not signers:
            self._log("warning", "NO VALID SIGNERS FOUND!")
        else:
            self._log("debug", "Fetched signers. %s", sorted(signers))
        self.cache.put_signers(signers)
        self.cache.mark_refreshed()
        telemetry.execute(
            telemetry.STRATEGY_SIGNERS,
            {"count": len(signers)},
            {"name": self.name, "signers": signers, "telemetry_prefix": self.config.event_prefix},
        )

    def signers(self) -> KeySet | None:
        return self.cache.get_signers()

    def match_signer_for_kid(self, kid: str) -> Signer:
        signers = self.cache.get_signers()
        if signers is None:
            raise SignerMatchError(ErrorReason.NO_SIGNERS_FETCHED)
        signer = signers.get(kid)
        if signer is None:
            self.cache.mark_refresh_needed()
            raise SignerMatchError(ErrorReason.KID_DOES_NOT_MATCH, kid)
        return signer
