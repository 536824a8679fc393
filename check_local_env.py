"""Validate the local realtime dialog environment.

Usage:
  python3 check_local_env.py

Reads the same DIALOG_* variables and .env file as the relay does.
"""

from __future__ import annotations

import sys
from pathlib import Path


ENV_PATH = Path(__file__).resolve().parent / ".env"


def _format_validation_errors(exc) -> list[str]:
    errors = []
    for error in exc.errors():
        field_name = ".".join(str(part) for part in error["loc"])
        errors.append(f"DIALOG_{field_name.upper()}: {error['msg']}")
    return errors


def main(env_file: Path = ENV_PATH) -> int:
    py_version = sys.version_info
    if py_version < (3, 11):
        print(
            "Unsupported Python version: "
            f"{py_version.major}.{py_version.minor}. "
            "Use Python 3.11 or newer for this repo."
        )
        return 1

    from pydantic import ValidationError

    errors: list[str] = []
    warnings: list[str] = []
    try:
        from realtime_dialog.settings import DEFAULT_BASE_URL, Settings

        checked = Settings(_env_file=env_file)  # type: ignore[call-arg]
    except ValidationError as exc:
        checked = None
        errors.extend(_format_validation_errors(exc))

    if checked is not None:
        for name in checked.missing():
            errors.append(f"DIALOG_{name.upper()} is missing")
        if checked.base_url == DEFAULT_BASE_URL:
            warnings.append("DIALOG_BASE_URL is not set; the public realtime dialogue endpoint will be used")
        elif checked.base_url.startswith("ws://"):
            warnings.append("DIALOG_BASE_URL uses plain ws://; credentials are sent unencrypted")

    print(f"Env file: {env_file}{'' if env_file.exists() else ' (not found)'}")
    if errors:
        print("\nErrors:")
        for item in errors:
            print(f"  - {item}")
    if warnings:
        print("\nWarnings:")
        for item in warnings:
            print(f"  - {item}")

    if errors:
        print("\nLocal environment is not ready.")
        return 1

    print("\nLocal environment looks ready.")
    print("Next:")
    print("  uvicorn realtime_dialog.main:app --reload")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
