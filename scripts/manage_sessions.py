#!/usr/bin/env python3
"""Inspect and revoke login sessions from the command line.

Usage:
    # List a user's active sessions, most recently used first
    python scripts/manage_sessions.py list --user 3f2c...

    # End one login chain (e.g. a lost device)
    python scripts/manage_sessions.py revoke-family --family 9a1b...

    # Log a user out of every device
    python scripts/manage_sessions.py revoke-user --user 3f2c...

    # Drop dangling session index entries now instead of waiting an hour
    python scripts/manage_sessions.py sweep

Environment Variables:
    REDIS_URL: Redis connection string
    JWT_SECRET / JWT_REFRESH_SECRET: signing secrets (required outside TEST_MODE)
    REDIS_KEY_NAMESPACE: key prefix shared with the running service
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def run_command(args: argparse.Namespace) -> dict:
    # Import here so configuration is read after argument parsing
    from umiauth.logging import correlation_scope
    from umiauth.service.runtime import Runtime

    with correlation_scope("cli"):
        return await _dispatch(Runtime(), args)


async def _dispatch(runtime, args: argparse.Namespace) -> dict:
    await asyncio.to_thread(runtime.store.verify_connection)
    try:
        if args.command == "list":
            sessions = await runtime.tokens.list_sessions(args.user)
            return {"user_id": args.user, "sessions": [asdict(s) for s in sessions]}
        if args.command == "revoke-family":
            if args.dry_run:
                return {"token_family": args.family, "status": "dry_run"}
            await runtime.tokens.revoke_family(args.family)
            return {"token_family": args.family, "status": "revoked"}
        if args.command == "revoke-user":
            if args.dry_run:
                sessions = await runtime.tokens.list_sessions(args.user)
                return {"user_id": args.user, "status": "dry_run", "would_revoke": len(sessions)}
            count = await runtime.tokens.revoke_all_for_user(args.user)
            return {"user_id": args.user, "status": "revoked", "families": count}
        removed = await runtime.tokens.cleanup_expired_families()
        return {"status": "swept", "removed": removed}
    finally:
        await runtime.store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage credential sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List a user's active sessions")
    list_cmd.add_argument("--user", required=True, help="User id")

    family_cmd = sub.add_parser("revoke-family", help="Revoke one token family")
    family_cmd.add_argument("--family", required=True, help="Token family id")
    family_cmd.add_argument("--dry-run", action="store_true")

    user_cmd = sub.add_parser("revoke-user", help="Revoke every session of a user")
    user_cmd.add_argument("--user", required=True, help="User id")
    user_cmd.add_argument("--dry-run", action="store_true")

    sub.add_parser("sweep", help="Remove dangling session index entries")
    return parser


def main():
    args = build_parser().parse_args()
    try:
        result = asyncio.run(run_command(args))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
