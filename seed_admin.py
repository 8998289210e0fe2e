#!/usr/bin/env python3
"""
Create the StudyFlow admin account.
Uses the same storage initialization as the main app; running it twice is harmless.
"""

import os
import sys

from accounts import create_user, find_user_by_email
from storage import init_store

DEFAULT_ADMIN_EMAIL = "admin@studyflow.com"
DEFAULT_ADMIN_NAME = "Admin"


def seed_admin(store, email, password, name=DEFAULT_ADMIN_NAME):
    """Return (user, created). An existing account with this email is left untouched."""
    existing = find_user_by_email(store, email)
    if existing:
        return existing, False
    return create_user(store, name, email, password, role='admin'), True


if __name__ == "__main__":
    print("🚀 StudyFlow Admin Seeder")
    print("=" * 50)

    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        print("❌ ADMIN_PASSWORD is not set")
        sys.exit(1)

    store = init_store()
    if store.name == 'memory':
        print("⚠️  Seeding the in-memory store; the account will not outlive this process")

    user, created = seed_admin(
        store,
        os.getenv("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL),
        password,
        os.getenv("ADMIN_NAME", DEFAULT_ADMIN_NAME),
    )
    if created:
        print(f"✅ Admin user created: {user.email}")
    else:
        print(f"ℹ️  Admin user already exists: {user.email} (role: {user.role})")
