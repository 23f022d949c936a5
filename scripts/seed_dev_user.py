"""Provision the development identity against the configured store.

Creates (or refreshes) the site-administration program, the development user
bound to the dev certificate subject, and optionally a few tracked items for
exercising the batch endpoint locally.
"""
from __future__ import annotations

import argparse
import json

from modules.persistence import repos
from modules.persistence.db import get_session
from services.api.config import DEV_SUBJECT


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the development user and program")
    parser.add_argument("--subject", default=DEV_SUBJECT, help="Certificate subject to bind the user to")
    parser.add_argument("--user-name", default="dev-visitor")
    parser.add_argument("--admin", action="store_true", help="Make the user a system admin")
    parser.add_argument("--access-level", default="Write", choices=["Read", "Write", "Admin"])
    parser.add_argument("--items", type=int, default=0, help="Tracked items to create in the program")
    args = parser.parse_args()

    with get_session() as session:
        program = repos.upsert_program(
            session,
            program_code="SITE-ADMIN",
            program_name="Site Administration",
            description="Master program for site administration and system management",
        )
        user = repos.upsert_user(
            session,
            certificate_subject=args.subject,
            user_name=args.user_name,
            display_name="Development User (Admin)" if args.admin else "Development Visitor (Limited Access)",
            is_system_admin=args.admin,
        )
        repos.grant_program_access(session, user_id=user.user_id, program_id=program.program_id, access_level=args.access_level)
        item_ids = [
            repos.create_tracked_item(session, program_id=program.program_id, item_identifier=f"DEV-{n:04d}").item_id
            for n in range(1, args.items + 1)
        ]
        summary = {
            "user_id": user.user_id,
            "program_id": program.program_id,
            "access_level": args.access_level,
            "is_system_admin": args.admin,
            "item_ids": item_ids,
        }

    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
