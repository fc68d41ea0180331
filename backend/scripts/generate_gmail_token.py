#!/usr/bin/env python3
"""
One-time interactive Gmail authorization for the worker.

Opens a browser for consent using the OAuth client file (CREDENTIALS_PATH,
default credentials.json) and prints the refresh token to put in .env as
GMAIL_REFRESH_TOKEN. The worker itself never runs an interactive flow.

Usage (from backend directory):
  PYTHONPATH=. python scripts/generate_gmail_token.py [--port 8765]
"""
import argparse
import os
import sys

_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from google_auth_oauthlib.flow import InstalledAppFlow

from job_digest.config import settings
from job_digest.token_guardian import SCOPES


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--port", type=int, default=0, help="Local redirect port (default: any free port)")
    args = parser.parse_args()

    if not os.path.exists(settings.credentials_path):
        print(f"OAuth client file not found: {settings.credentials_path}", file=sys.stderr)
        return 1

    flow = InstalledAppFlow.from_client_secrets_file(settings.credentials_path, SCOPES)
    # prompt=consent forces Google to issue a new refresh token
    creds = flow.run_local_server(port=args.port, access_type="offline", prompt="consent")
    if not creds.refresh_token:
        print("No refresh token returned; revoke the app's access and try again.", file=sys.stderr)
        return 1

    print("Add these to .env:")
    print(f"GMAIL_CLIENT_ID={creds.client_id}")
    print(f"GMAIL_CLIENT_SECRET={creds.client_secret}")
    print(f"GMAIL_REFRESH_TOKEN={creds.refresh_token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
