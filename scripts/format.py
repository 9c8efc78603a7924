"""Format script for the on-call assistant backend."""

import subprocess
import sys
from pathlib import Path


def _targets() -> list[str]:
    """Source packages plus the root-level test modules."""
    tests = sorted(str(p) for p in Path(".").glob("test_*.py"))
    return ["src/", "scripts/", *tests]


def _ruff(*args: str) -> None:
    subprocess.run(["uv", "run", "ruff", *args], check=True)


def main():
    """Run ruff format, whitespace cleanups and the remaining lint fixes."""
    targets = _targets()
    try:
        _ruff("format", *targets)

        # Whitespace-only fixes need preview + unsafe
        _ruff("check", "--preview", "--fix", "--unsafe-fixes", "--select", "W291,W293,E3", *targets)

        _ruff("check", "--fix", "--ignore", "E501", *targets)
    except subprocess.CalledProcessError:
        sys.exit(1)


if __name__ == "__main__":
    main()
