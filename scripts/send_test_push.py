#!/usr/bin/env python3
"""
Dev helper: send a fake Gmail Pub/Sub push to the local Drue backend.

Builds the same envelope Google Cloud Pub/Sub delivers for a Gmail watch
(base64 ``message.data`` wrapping ``{"emailAddress", "historyId"}``) and
POST-s it to /api/gmail/pubsub/webhook.

The webhook always answers 204, so the interesting output is in the backend
log: the push receipt line, then either one "New Gmail message received"
line per new message or the reason the sync was skipped.

Usage
-----
# Basic: push for the given mailbox at the given history id
python scripts/send_test_push.py --email a@b.com --history-id 123456

# Target a different backend URL
python scripts/send_test_push.py --email a@b.com --history-id 123456 --url http://staging.example.com

# Print the envelope without sending
python scripts/send_test_push.py --email a@b.com --history-id 123456 --dry-run

Environment / .env
------------------
PUBSUB_VERIFICATION_TOKEN   When set on the backend, pushes must carry the
                            same value as ``?token=``. Read from the
                            environment or passed with --token.

The script reads these from a .env file in the project root if present,
without requiring python-dotenv to be installed (it parses the file directly).
"""

import argparse
import base64
import json
import os
import sys
import textwrap
import uuid
from datetime import datetime, timezone
from pathlib import Path

import httpx


# ---------------------------------------------------------------------------
# .env loader (no dependencies required)
# ---------------------------------------------------------------------------

def _load_dotenv(path: Path) -> None:
    """
    Parse a .env file and set variables in os.environ.

    Only sets variables that are not already in the environment, the same
    behavior as python-dotenv's load_dotenv(override=False).
    """
    if not path.exists():
        return
    with path.open() as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


# ---------------------------------------------------------------------------
# Envelope builder
# ---------------------------------------------------------------------------

def _build_push_envelope(email: str, history_id: str, subscription: str) -> dict:
    """
    Build a Pub/Sub push envelope for a Gmail notification.

    Pub/Sub push format:
      message.data         base64 of {"emailAddress", "historyId"}
      message.messageId    Pub/Sub message id
      message.publishTime  RFC 3339 timestamp
      subscription         full subscription name
    """
    inner = json.dumps({"emailAddress": email, "historyId": history_id}).encode()
    return {
        "message": {
            "data": base64.b64encode(inner).decode(),
            "messageId": str(uuid.uuid4().int)[:16],
            "publishTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
        "subscription": subscription,
    }


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    # Locate project root (scripts/ lives one level below the root)
    script_dir = Path(__file__).resolve().parent
    project_root = script_dir.parent
    _load_dotenv(project_root / ".env")
    _load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_push.py",
        description=textwrap.dedent("""\
            Send a fake Gmail Pub/Sub push to the Drue backend.

            Reads PUBSUB_VERIFICATION_TOKEN from the environment or a .env
            file in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_push.py --email a@b.com --history-id 123456
              python scripts/send_test_push.py --email a@b.com --history-id 123456 --dry-run
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--email",
        required=True,
        help="Mailbox address the notification is for (must have a stored token)",
    )
    parser.add_argument(
        "--history-id",
        required=True,
        help="History cursor carried by the notification",
    )
    parser.add_argument(
        "--subscription",
        default="projects/local-dev/subscriptions/gmail-push",
        help="Subscription name placed in the envelope",
    )
    parser.add_argument(
        "--token",
        default=None,
        metavar="TOKEN",
        help="Override the verification token. Defaults to PUBSUB_VERIFICATION_TOKEN.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the envelope JSON without sending it.",
    )

    args = parser.parse_args()

    envelope = _build_push_envelope(args.email, args.history_id, args.subscription)
    endpoint = f"{args.url.rstrip('/')}/api/gmail/pubsub/webhook"

    print(f"Endpoint  : {endpoint}")
    print(f"Email     : {args.email}")
    print(f"HistoryId : {args.history_id}")

    if args.dry_run:
        print("\n[DRY RUN] Envelope:")
        print(json.dumps(envelope, indent=2))
        return 0

    token = args.token or os.getenv("PUBSUB_VERIFICATION_TOKEN", "")
    params = {"token": token} if token else None

    try:
        response = httpx.post(endpoint, json=envelope, params=params, timeout=30)
    except httpx.ConnectError as e:
        print(f"\nERROR: Could not connect to {endpoint}: {e}", file=sys.stderr)
        print("Is the backend running? Try: cd backend && uvicorn app.main:app --reload", file=sys.stderr)
        return 1

    status = response.status_code
    symbol = "OK" if status == 204 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    if response.content:
        print(response.text)
    return 0 if status == 204 else 1


if __name__ == "__main__":
    sys.exit(main())
