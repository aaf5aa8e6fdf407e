"""
Restart smoke test.

Starts the API, locks one report, restarts the API and checks that the
report, its totals and its ledger commit survived the restart.
Needs a reachable database, Redis, and git on PATH.
"""

import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timezone

import httpx

from freelance_backend.app.core.jwt import create_access_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
SERVER_CMD = [sys.executable, "-m", "uvicorn", "freelance_backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"]


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.TransportError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def stop(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def run_verification():
    # A fresh caller per run so the (owner, period) slot is always free
    user_id = int(time.time()) % 1_000_000 + 1000
    token = create_access_token(data={"sub": f"smoke-{user_id}", "user_id": user_id})
    headers = {"Authorization": f"Bearer {token}"}
    today = datetime.now(timezone.utc).date()

    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                            env={**os.environ, "DB_ECHO": "True"})

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stderr:", server_logs[1].decode())
            raise RuntimeError("Server start failed")

        print("\n--- [Step 2] Draft -> Submitted -> Locked ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/assignments", json={"name": "Smoke assignment"}, headers=headers)
        resp.raise_for_status()
        assignment_id = resp.json()["id"]

        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/reports",
                          json={"month": today.month, "year": today.year}, headers=headers)
        resp.raise_for_status()
        report_id = resp.json()["id"]

        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/reports/{report_id}/entries",
            json={"assignment_id": assignment_id, "date": today.replace(day=1).isoformat(),
                  "quantity": "1.5", "unit_price": 60000},
            headers=headers
        )
        resp.raise_for_status()

        httpx.post(f"{BASE_URL}{API_PREFIX}/reports/{report_id}/submit", headers=headers).raise_for_status()
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/reports/{report_id}/lock", headers=headers, timeout=30)
        resp.raise_for_status()
        revision_id = resp.json()["revision_id"]
        print(f"✅ Report {report_id} locked at ledger revision {revision_id}")
    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop(proc)

    time.sleep(2)  # port release

    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/reports/{report_id}", headers=headers)
        report = resp.json()
        if resp.status_code != 200 or report["status"] != "locked" or report["total_amount"] != 90000:
            raise RuntimeError(f"Report did not survive the restart: {resp.status_code} {resp.text}")
        print("✅ Report persisted as locked with its totals")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/reports/{report_id}/ledger", headers=headers)
        commits = resp.json()["commits"]
        if [commit["revision_id"] for commit in commits] != [revision_id]:
            raise RuntimeError(f"Ledger history mismatch: {commits}")
        print("✅ Ledger commit persisted")
    finally:
        print("\n--- [Step 5] Stopping Server ---")
        stop(proc2)


if __name__ == "__main__":
    run_verification()
