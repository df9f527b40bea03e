"""Named strategies, one per JWKS source (e.g. one per tenant).

Each registered strategy owns its own cache and poller; nothing is shared
between them. The registry lock is only held to add or remove names, never
while a strategy fetches, and lookups do not take it at all.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from .errors import ConfigurationError, ErrorReason, JWKSError, StrategyNotFoundError
from .strategy import DefaultStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._strategies: dict[str, DefaultStrategy] = {}
        self._starting: set[str] = set()

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: object) -> bool:
        return name in self._strategies

    def start_strategy(
        self,
        name: str,
        *,
        strategy_cls: type[DefaultStrategy] = DefaultStrategy,
        **options: Any,
    ) -> DefaultStrategy:
        """Create, start and register a strategy under ``name``.

        Blocks only if ``first_fetch_sync`` is set, and then only this call.
        """
        if "name" in options:
            raise ConfigurationError(
                ErrorReason.INVALID_OPTION, "the strategy name is the first argument, not an option"
            )
        with self._lock:
            if name in self._strategies or name in self._starting:
                raise JWKSError(ErrorReason.ALREADY_STARTED, f"strategy {name!r} already started")
            self._starting.add(name)
        try:
            strategy = strategy_cls(name, **options)
            strategy.start()
        except BaseException:
            with self._lock:
                self._starting.discard(name)
            raise
        with self._lock:
            self._starting.discard(name)
            self._strategies = {**self._strategies, name: strategy}
        logger.debug("registered JWKS strategy %s (%s)", name, strategy.config.jwks_url)
        return strategy

    def lookup_by_name(self, name: str) -> DefaultStrategy:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise StrategyNotFoundError(name)
        return strategy

    def get(self, name: str) -> DefaultStrategy | None:
        return self._strategies.get(name)

    def name_for(self, strategy: DefaultStrategy) -> str | None:
        for name, registered in self._strategies.items():
            if registered is strategy:
                return name
        return None

    def names(self) -> list[str]:
        return sorted(self._strategies)

    def strategies(self) -> list[DefaultStrategy]:
        return list(self._strategies.values())

    def stop(self, name: str) -> None:
        with self._lock:
            strategy = self._strategies.get(name)
            if strategy is None:
                raise StrategyNotFoundError(name)
            self._strategies = {k: v for k, v in self._strategies.items() if k != name}
        strategy.stop()
        logger.debug("stopped JWKS strategy %s", name)

    def stop_all(self) -> None:
        with self._lock:
            stopping = list(self._strategies.values())
            self._strategies = {}
        for strategy in stopping:
            strategy.stop()


default_registry = StrategyRegistry()
