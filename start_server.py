#!/usr/bin/env python3
"""Run the on-device journey service with uvicorn.

HOST defaults to loopback since only the local UI talks to this service.
PORT falls back to 8000 when unset or not a number.
"""

import os
import sys
from pathlib import Path

import uvicorn

SRC_DIR = Path(__file__).resolve().parent / "src"


def _port() -> int:
    raw = os.environ.get("PORT", "8000")
    try:
        return int(raw)
    except ValueError:
        print(f"Warning: Invalid PORT value '{raw}', using default 8000", file=sys.stderr)
        return 8000


def main() -> int:
    if not SRC_DIR.is_dir():
        print(f"Error: src directory not found at {SRC_DIR}", file=sys.stderr)
        return 1
    sys.path.insert(0, str(SRC_DIR))

    host = os.environ.get("HOST", "127.0.0.1")
    port = _port()
    print(f"Starting courier service on {host}:{port}...", file=sys.stderr)
    try:
        uvicorn.run("courier.main:app", host=host, port=port, log_level=os.environ.get("LOG_LEVEL", "info"))
    except KeyboardInterrupt:
        print("Server interrupted by user", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
