"""Executable entry point for `python -m cosa.cli` and the `cosa` script."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

from .app import app


def main() -> None:  # pragma: no cover - thin wrapper
    # COSA_* variables already set in the environment win over .env entries
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    app(prog_name="cosa")


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
