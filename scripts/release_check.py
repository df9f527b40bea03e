from __future__ import annotations

import re
from pathlib import Path
from typing import Any


def _load_pyproject(pyproject_path: Path) -> dict[str, Any]:
    try:
        import tomllib  # py311+
    except ModuleNotFoundError:  # pragma: no cover
        raise SystemExit("python>=3.11 required (tomllib missing)")

    data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):  # pragma: no cover
        raise SystemExit("pyproject.toml is not a table")
    return data


def _project_version(data: dict[str, Any]) -> str:
    version = data.get("project", {}).get("version")
    if not isinstance(version, str) or not version.strip():
        raise SystemExit("pyproject.toml missing [project].version")
    return version.strip()


def _require_pinned(spec: str, *, context: str) -> None:
    if "==" not in spec:
        raise SystemExit(f"unpinned dependency in {context}: {spec!r} (expected '==')")


def _check_pins(data: dict[str, Any], req_dev: Path) -> None:
    project = data.get("project", {})
    deps = project.get("dependencies", [])
    if not isinstance(deps, list):
        raise SystemExit("pyproject.toml [project].dependencies must be a list")
    for dep in deps:
        _require_pinned(str(dep).strip(), context="pyproject.toml dependencies")

    extras = project.get("optional-dependencies", {})
    for extra, specs in extras.items():
        for dep in specs:
            _require_pinned(str(dep).strip(), context=f"pyproject.toml [{extra}] extra")

    for raw in req_dev.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(("-r", "--requirement", "-e")):
            continue
        _require_pinned(line, context="requirements-dev.txt")


def main() -> int:
    root = Path(__file__).resolve().parents[1]
    data = _load_pyproject(root / "pyproject.toml")
    version = _project_version(data)

    changelog_text = (root / "CHANGELOG.md").read_text(encoding="utf-8")
    if not re.search(rf"^##\s+v{re.escape(version)}\b", changelog_text, flags=re.MULTILINE):
        raise SystemExit(f"CHANGELOG.md missing section header for v{version}")

    # `jwks-refresh --version` must report the pyproject version.
    from jwks_refresh.version import __version__  # imported late to keep script fast

    if __version__ != version:
        raise SystemExit(f"version mismatch: pyproject={version} package={__version__}")

    _check_pins(data, root / "requirements-dev.txt")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
