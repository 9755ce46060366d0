#!/usr/bin/env python3
"""
Deletion processing script for cron.

Calls the admin-execute or maintenance endpoint of a running API so the
work happens inside the service, with its configuration and audit trail.

Usage:
    # Execute all confirmed deletions whose cooldown has elapsed
    python scripts/process_deletions.py execute

    # Force one user's confirmed deletion now
    python scripts/process_deletions.py execute --user-id <uuid>

    # Expire unconfirmed requests, or run cleanup then execution
    python scripts/process_deletions.py cleanup
    python scripts/process_deletions.py full

    # Queue counts
    python scripts/process_deletions.py status

Environment:
    LIFECYCLE_API_URL   Base URL of the API (default http://localhost:8000)
    ADMIN_SECRET        Operator secret configured on the API
"""

import argparse
import json
import os
import sys

import httpx

DEFAULT_API_URL = "http://localhost:8000"
TIMEOUT_SECONDS = 300.0

MAINTENANCE_ACTIONS = {
    "cleanup": "cleanup_expired_requests",
    "full": "full_maintenance",
}


def _request(args: argparse.Namespace, secret: str) -> httpx.Response:
    base = args.api_url.rstrip("/")
    with httpx.Client(timeout=TIMEOUT_SECONDS) as client:
        if args.command == "execute":
            body = {
                "action": "execute_user_deletion" if args.user_id else "execute_pending_deletions",
                "admin_secret": secret,
            }
            if args.user_id:
                body["user_id"] = args.user_id
            return client.post(f"{base}/api/v1/admin/deletions/execute", json=body)

        if args.command == "status":
            return client.get(
                f"{base}/api/v1/maintenance/status",
                headers={"X-Admin-Secret": secret},
            )

        return client.post(
            f"{base}/api/v1/maintenance/cleanup",
            json={"action": MAINTENANCE_ACTIONS[args.command], "admin_secret": secret},
        )


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Trigger account deletion processing on the lifecycle API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("command", choices=["execute", "cleanup", "full", "status"])
    parser.add_argument("--user-id", help="Force execution for one user (execute only)")
    parser.add_argument(
        "--api-url",
        default=os.getenv("LIFECYCLE_API_URL", DEFAULT_API_URL),
        help="API base URL",
    )
    args = parser.parse_args()

    secret = os.getenv("ADMIN_SECRET", "")
    if not secret:
        print("ADMIN_SECRET is not set", file=sys.stderr)
        return 2
    if args.user_id and args.command != "execute":
        parser.error("--user-id is only valid with the execute command")

    try:
        response = _request(args, secret)
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    try:
        payload = response.json()
    except ValueError:
        payload = {"raw": response.text}
    print(json.dumps(payload, indent=2))

    if response.status_code >= 400:
        return 1
    # A sweep with failures still needs attention from whoever reads cron mail
    if isinstance(payload, dict) and payload.get("failed"):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
