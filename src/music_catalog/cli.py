"""
Out-of-band administration: change a user's role.

Usage:
    music-catalog-promote someone@example.com
    music-catalog-promote someone@example.com --role user
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from music_catalog.db import init_db
from music_catalog.errors import GatewayError
from music_catalog.gateway import UserGateway

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def promote_user(email: str, role: str = "admin", users: Optional[UserGateway] = None) -> int:
    """Set the role of every user record with this email. Returns how many changed."""
    users = users or UserGateway()
    updated = users.set_role(email, role)
    logger.info("promote_user: email=%s role=%s updated=%s", email, role, updated)
    return updated


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Change a music catalog user's role.")
    parser.add_argument("email", help="Email of the user to change.")
    parser.add_argument("--role", choices=("admin", "user"), default="admin")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        init_db()
        updated = promote_user(args.email, args.role)
    except (GatewayError, RuntimeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if not updated:
        print(f"No user with email {args.email}. They must sign in once first.", file=sys.stderr)
        return 1
    print(f"{args.email} is now {args.role}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
