from __future__ import annotations

from importlib import metadata


def get_version() -> str:
    try:
        return metadata.version("jwks-refresh")
    except metadata.PackageNotFoundError:
        # Running from a source checkout without an installed dist.
        return "0.0.0"


__version__ = get_version()
