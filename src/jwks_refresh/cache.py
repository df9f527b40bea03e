"""Per-strategy key cache.

Readers never lock: the signer mapping is an immutable snapshot replaced by
a single reference assignment, and the refresh flag is a plain attribute.
Only the owning strategy's refresh path calls :meth:`KeyCache.put_signers`
and :meth:`KeyCache.mark_refreshed`.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType

from .parser import KeySet, Signer


class RefreshState(Enum):
    NOT_NEEDED = 0
    NEEDED = 1


class KeyCache:
    def __init__(self) -> None:
        self._signers: KeySet | None = None
        self._state = RefreshState.NOT_NEEDED
        self._refreshed_at: float | None = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def refreshed_at(self) -> float | None:
        return self._refreshed_at

    def needs_refresh(self) -> bool:
        return self._state is RefreshState.NEEDED

    def mark_refresh_needed(self) -> None:
        # Idempotent: any number of misses collapse into one pending refresh.
        self._state = RefreshState.NEEDED

    def mark_refreshed(self) -> None:
        self._state = RefreshState.NOT_NEEDED

    def get_signers(self) -> KeySet | None:
        """Current snapshot, or ``None`` if no refresh has succeeded yet."""
        return self._signers

    def get_signer(self, kid: str) -> Signer | None:
        signers = self._signers
        if signers is None:
            return None
        return signers.get(kid)

    def put_signers(self, signers: Mapping[str, Signer]) -> None:
        snapshot = signers if isinstance(signers, MappingProxyType) else MappingProxyType(dict(signers))
        self._signers = snapshot
        self._refreshed_at = time.time()

    def clear(self) -> None:
        self._signers = None
        self._refreshed_at = None
        self._state = RefreshState.NOT_NEEDED
