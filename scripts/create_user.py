#!/usr/bin/env python3
import argparse
import asyncio
import getpass
import sys

from rodnya.core.directory import UserDirectory
from rodnya.core.errors import ChatError
from rodnya.core.store import Database


async def _create(db_path: str, username: str, password: str, min_len: int) -> int:
    async with Database(db_path) as db:
        directory = UserDirectory(db, min_password_length=min_len)
        try:
            user = await directory.register(username, password)
        except ChatError as exc:
            print(f"error ({exc.code}): {exc.detail}", file=sys.stderr)
            return 1
    print(f"Created user {user.username} with id {user.id} in {db_path}")
    return 0


def main():
    ap = argparse.ArgumentParser(description="Create a chat account directly in the server database")
    ap.add_argument("--user", required=True)
    ap.add_argument("--db", default="data/rodnya.db")
    ap.add_argument("--password", default=None, help="prompted for when omitted")
    ap.add_argument("--min-password-length", type=int, default=4)
    args = ap.parse_args()

    password = args.password or getpass.getpass(f"Password for {args.user}: ")
    sys.exit(asyncio.run(_create(args.db, args.user, password, args.min_password_length)))


if __name__ == "__main__":
    main()
