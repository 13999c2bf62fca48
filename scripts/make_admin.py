#!/usr/bin/env python3
"""
Promote a league user to administrator.

Bypasses the secret code and the administrator limit; meant for bootstrapping
the first admin account from a shell on the server.

Usage:
    python scripts/make_admin.py user@example.com

Exit codes:
    0: Success
    1: User not found or store failure
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from league.config import Config, ConfigError
from league.errors import StoreError
from league.store import USERS, create_store
from league import services


def make_admin(store, email: str) -> int:
    """Set role=admin and active=true for the user with ``email``."""
    try:
        user = services.find_user_by_email(store, email)
        if user is None:
            print(f"Error: No user found with email {email}", file=sys.stderr)
            return 1
        store.update(USERS, user.id, {'role': 'admin', 'active': True})
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"{user.email} is now an administrator.")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Promote a league user to administrator'
    )
    parser.add_argument('email', help='Email address of the user to promote')
    args = parser.parse_args(argv)

    try:
        store = create_store(Config.from_env())
    except (ConfigError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    try:
        return make_admin(store, args.email)
    finally:
        store.close()


if __name__ == '__main__':
    sys.exit(main())
