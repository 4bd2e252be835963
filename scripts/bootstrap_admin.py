#!/usr/bin/env python3
"""Create or promote an admin account that can sign in to the admin portal.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='Secure-Passw0rd!' \
        python scripts/bootstrap_admin.py --sub-role super_admin

    python scripts/bootstrap_admin.py --email reviewer@example.com \
        --password 'Secure-Passw0rd!' --sub-role attorney_admin

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (12+ chars, 3+ character classes)
    DATABASE_URL: PostgreSQL connection string (memory store when unset)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(
    email: str,
    password: str,
    sub_role: str = "super_admin",
    *,
    full_name: str | None = None,
    dry_run: bool = False,
) -> dict:
    """Create the admin, or promote an existing profile, and set its password.

    Returns:
        dict with user_id, email, admin_sub_role and status
        ('created', 'promoted', 'password_reset' or 'dry_run')
    """
    # Deferred so the environment defaults in main() apply first
    from gatehouse.api.schemas import normalize_email
    from gatehouse.service.runtime import get_runtime

    email = normalize_email(email)
    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if dry_run:
        action = "create" if not existing else "update"
        print(f"[DRY RUN] Would {action} {sub_role} admin: {email}")
        return {
            "user_id": existing.id if existing else None,
            "email": email,
            "admin_sub_role": sub_role,
            "status": "dry_run",
        }

    if existing:
        status = (
            "password_reset"
            if existing.role == "admin" and existing.admin_sub_role == sub_role
            else "promoted"
        )
        runtime.store.update_user_role(existing.id, "admin", sub_role)
        user_id = existing.id
    else:
        user = runtime.store.create_user(
            email, role="admin", admin_sub_role=sub_role, full_name=full_name
        )
        user_id = user.id
        status = "created"

    runtime.credentials.set_password(user_id, password)
    return {
        "user_id": user_id,
        "email": email,
        "admin_sub_role": sub_role,
        "status": status,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for the admin portal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--sub-role",
        choices=["super_admin", "attorney_admin"],
        default="super_admin",
    )
    parser.add_argument("--full-name", default=None)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        return 1
    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        return 1

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_admin(
            args.email,
            args.password,
            args.sub_role,
            full_name=args.full_name,
            dry_run=args.dry_run,
        )
    except Exception as exc:
        print(f"Error: {exc}")
        return 1

    print(f"{result['status']}: {result['email']} ({result['admin_sub_role']})")
    if result["user_id"]:
        print(f"  User ID: {result['user_id']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
