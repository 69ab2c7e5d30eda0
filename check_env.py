#!/usr/bin/env python3
"""Helper script to check and create the .env file for the device service."""

import sys
from pathlib import Path

TEMPLATE = """# Delivery platform API (required)
COURIER_ROUTE_SERVICE_BASE_URL=https://ops.example.com/api

# Delivery executive this device belongs to (required)
COURIER_DRIVER_ID=

# Device-local state
COURIER_DATA_ROOT=./data
# COURIER_STORAGE_QUOTA_BYTES=5242880

# Sync and journey tuning
# COURIER_QUEUE_MAX_RETRIES=5
# COURIER_TRAFFIC_CHECK_INTERVAL_SECONDS=300
# COURIER_NETWORK_PROBE_INTERVAL_SECONDS=15
# COURIER_GEOLOCATION_TIMEOUT_SECONDS=8

# Fixed device position when no GPS bridge is available
# COURIER_DEVICE_LATITUDE=
# COURIER_DEVICE_LONGITUDE=

# COURIER_FRONTEND_ALLOWED_ORIGINS - Leave commented to use defaults
# JSON array: ["http://localhost:5173"] or comma-separated: http://localhost:5173,http://127.0.0.1:5173
"""


def main() -> int:
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("Courier Journey Sync environment checker")
    print("=" * 60)
    print()

    if not env_file.exists():
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"Created template .env file at: {env_file}")
        print("Please edit .env and set COURIER_ROUTE_SERVICE_BASE_URL and COURIER_DRIVER_ID.")
        return 1

    print(f"Found .env file at: {env_file}")
    print()

    sys.path.insert(0, str(project_root / "src"))
    try:
        from courier.config import Settings
        settings = Settings()
    except Exception as e:
        print(f"[ERROR] Could not load settings: {e}")
        return 1

    problems = []
    if not settings.route_service_base_url:
        problems.append("COURIER_ROUTE_SERVICE_BASE_URL is not set")
    if not settings.driver_id:
        problems.append("COURIER_DRIVER_ID is not set")

    print(f"   Route service: {settings.route_service_base_url or '-'}")
    print(f"   Driver id:     {settings.driver_id or '-'}")
    print(f"   Data root:     {settings.data_root}")
    print(f"   Queue retries: {settings.queue_max_retries}")
    print()

    if problems:
        print("=" * 60)
        for problem in problems:
            print(f"[ERROR] {problem}")
        print("=" * 60)
        return 1

    print("=" * 60)
    print("[OK] Device service is configured")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
