#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _bootstrap_imports() -> None:
    backend_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_root))


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant the admin role to existing users.")
    parser.add_argument("emails", nargs="+", help="Email address(es) of the users to promote.")
    args = parser.parse_args()

    _bootstrap_imports()

    from tp_notifications.auth import assign_admin_role  # noqa: PLC0415
    from tp_notifications.database import SessionLocal  # noqa: PLC0415

    missing = 0
    db = SessionLocal()
    try:
        for email in args.emails:
            user = assign_admin_role(db, email)
            if user is None:
                print(f"No user with email {email}", file=sys.stderr)
                missing += 1
                continue
            print(f"Promoted user {user.id} ({user.email}) to admin")
    finally:
        db.close()
    return 1 if missing else 0


if __name__ == "__main__":
    raise SystemExit(main())
