#!/usr/bin/env python3
"""Bootstrap a super admin account for initial setup.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=root ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username root --email admin@example.com --password SecurePassword123!

Environment Variables:
    ADMIN_USERNAME: Username for the super admin
    ADMIN_EMAIL: Email for the super admin
    ADMIN_PASSWORD: Password for the super admin (must meet complexity requirements)
    SHARED_FS_ROOT: Directory holding the persisted user state
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SUPER_ADMIN_ROLE = "ROLE_SUPER_ADMIN"


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def bootstrap_admin(
    username: str, email: str, password: str, dry_run: bool = False
) -> dict:
    """Create or promote a super admin.

    Returns:
        dict with id, username, and status ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from storeauth.service.runtime import get_runtime

    runtime = get_runtime()

    existing = runtime.users.find_user_by_username(username)
    if existing:
        if existing.role == SUPER_ADMIN_ROLE:
            print(f"User {username} already exists as super admin (id: {existing.id})")
            return {"id": existing.id, "username": username, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing user {username} to super admin")
            return {"id": existing.id, "username": username, "status": "dry_run"}

        user = runtime.users.update_user(
            existing.username,
            existing.first_name,
            existing.last_name,
            existing.username,
            existing.email,
            SUPER_ADMIN_ROLE,
            True,
            True,
        )
        print(f"Promoted existing user {username} to super admin (id: {user.id})")
        return {"id": user.id, "username": username, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create super admin: {username} <{email}>")
        return {"id": None, "username": username, "status": "dry_run"}

    user = runtime.users.add_new_user(
        "Super",
        "Admin",
        username,
        email,
        SUPER_ADMIN_ROLE,
        True,
        True,
        password=password,
    )
    print(f"Created super admin: {username} (id: {user.id})")
    return {"id": user.id, "username": username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a super admin for the store auth service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username (or set ADMIN_USERNAME env var)",
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
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        sys.exit(1)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/storeauth-bootstrap"
        print("Note: Using /tmp/storeauth-bootstrap (set SHARED_FS_ROOT for a durable location)")

    try:
        result = bootstrap_admin(args.username, args.email, args.password, args.dry_run)

        if result["status"] == "created":
            print("\nSuper admin created successfully!")
            print(f"  Username: {result['username']}")
            print(f"  ID: {result['id']}")
        elif result["status"] == "promoted":
            print("\nExisting user promoted to super admin!")
        elif result["status"] == "already_admin":
            print("\nNo changes needed - user is already a super admin.")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
