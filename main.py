#!/usr/bin/env python3
"""
Health portal operator CLI.

Usage:
  python main.py seed-providers
  python main.py create-provider --email doc3@example.com --password 'S3cret!pw' --name "Dr. Carol"
  python main.py audit-trail --user-id 12
  python main.py audit-trail --resource-id 7 --days 90

Reads the same settings as the API (DATABASE_URL, JWT_SECRET, ... or .env).
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from audit.models import AuditEntry
from audit.store import AuditStore
from auth.service import AuthService
from auth.store import UserStore
from consent.ledger import ConsentLedger
from core.exceptions import AppError
from patients.store import ProfileStore

logger = logging.getLogger("healthportal.cli")

# Fixed set of providers for a fresh install. Change the password after first login.
DEFAULT_PROVIDERS = [
    {"email": "doc1@example.com", "name": "Dr. Alice", "specialty": "Family Medicine"},
    {"email": "doc2@example.com", "name": "Dr. Bob", "specialty": "Preventive Care"},
]
DEFAULT_PROVIDER_PASSWORD = "changeme123"  # nosec B105 -- documented seed password


def seed_providers(service: AuthService, password: str = DEFAULT_PROVIDER_PASSWORD) -> list[str]:
    """Create the default provider accounts that do not exist yet. Returns the emails created."""
    created: list[str] = []
    for p in DEFAULT_PROVIDERS:
        if service.users.email_exists(p["email"]):
            print(f"  Provider {p['email']} already exists, skipping")
            continue
        service.create_provider(p["email"], password, p["name"], p["specialty"])
        print(f"  Seeded provider {p['email']}")
        created.append(p["email"])
    return created


def audit_trail(
    store: AuditStore,
    user_id: Optional[int] = None,
    resource_id: Optional[int] = None,
    days: int = 30,
) -> list[AuditEntry]:
    """Return a user's activity, or PHI access to one resource, over the last `days` days."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    if user_id is not None:
        return store.user_activity(user_id, start, end)
    if resource_id is not None:
        return store.phi_access(resource_id, start, end)
    raise ValueError("user_id or resource_id is required")


def _build_service(db_url: Optional[str]) -> AuthService:
    return AuthService(UserStore(db_url), ConsentLedger(db_url), ProfileStore(db_url))


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="healthportal",
        description="Operator tasks for the health portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-providers
  python main.py create-provider --email doc3@example.com --password 'S3cret!pw' --name "Dr. Carol"
  python main.py audit-trail --user-id 12 --days 7
  python main.py audit-trail --resource-id 7 > phi_access.jsonl
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed-providers", help="Create the default provider accounts")

    create = sub.add_parser("create-provider", help="Create one provider account")
    create.add_argument("--email", required=True)
    create.add_argument("--password", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--specialty", default=None)

    trail = sub.add_parser("audit-trail", help="Print audit entries as JSON lines")
    target = trail.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id", type=int, help="Everything this user did")
    target.add_argument("--resource-id", type=int, help="PHI access to this record")
    trail.add_argument("--days", type=int, default=30, help="Look-back window in days (default: 30)")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    if args.command == "audit-trail":
        store = AuditStore(args.database_url)
        try:
            for entry in audit_trail(store, args.user_id, args.resource_id, args.days):
                print(json.dumps(asdict(entry), default=str))
        finally:
            store.close()
        return 0

    service = _build_service(args.database_url)
    try:
        if args.command == "seed-providers":
            created = seed_providers(service)
            print(f"Seeding complete ({len(created)} created).")
        else:
            user = service.create_provider(args.email, args.password, args.name, args.specialty)
            print(f"Created provider {user.email} (id={user.id}).")
    except AppError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        service.users.close()
        service.consents.close()
        service.profiles.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
