from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta
import sys

from kinwatch.persistence import paths
from kinwatch.persistence.factory import get_store
from kinwatch.services.auth.principals import issue_token


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit to avoid granting admin to the wrong account.
    parser = argparse.ArgumentParser(description="Flag an account as admin and print a bearer token for it")
    parser.add_argument("--uid", required=True, help="Account uid to flag")
    parser.add_argument("--email", default=None, help="Optional email claim for the token")
    parser.add_argument("--revoke", action="store_true", help="Remove the admin flag instead")
    parser.add_argument("--ttl-hours", type=int, default=12, help="Token lifetime in hours")
    return parser


async def _grant(args: argparse.Namespace) -> int:
    store = get_store()
    if args.revoke:
        await store.remove(paths.admin_flag(args.uid))
        print(f"admin flag removed for {args.uid}")
        return 0
    await store.set(paths.admin_flag(args.uid), True)
    token = issue_token(args.uid, email=args.email, ttl=timedelta(hours=args.ttl_hours))
    print(f"admin flag set for {args.uid}")
    print("  bearer token: ")
    print(f"    {token}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_grant(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"grant_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
