#!/usr/bin/env python3
"""
Health Check Script for the Staking API
Polls the liveness route and appends the result to data/health-check.log
Can be scheduled with Windows Task Scheduler or cron
"""

import os
import sys
import time
from pathlib import Path

import requests

SERVICE_NAME = "fulcanellie-staking-api"
API_URL = os.getenv("STAKING_API_URL", f"http://localhost:{os.getenv('PORT', '3001')}/")
MAX_RETRIES = 3
RETRY_DELAY = 5


def check_service(url):
    """Return (ok, error). Healthy means GET / answers with our liveness payload."""
    error = "Max retries exceeded"
    for attempt in range(MAX_RETRIES):
        try:
            response = requests.get(url, timeout=5)
            payload = response.json() if response.status_code == 200 else {}
            if payload.get("ok") is True and payload.get("service") == SERVICE_NAME:
                return True, None
            error = f"Unexpected response ({response.status_code}): {response.text[:200]}"
        except (requests.RequestException, ValueError) as e:
            error = str(e)

        if attempt < MAX_RETRIES - 1:
            time.sleep(RETRY_DELAY)
    return False, error


def main():
    ok, error = check_service(API_URL)

    log_file = Path("data/health-check.log")
    log_file.parent.mkdir(exist_ok=True)

    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    line = f"{timestamp} - OK: {SERVICE_NAME} healthy" if ok else f"{timestamp} - ERROR: {SERVICE_NAME} DOWN: {error}"

    with open(log_file, "a") as f:
        f.write(line + "\n")
    print(line)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
