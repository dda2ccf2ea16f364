#!/usr/bin/env python3
"""
Cypress -- operator CLI for the identity core.

Usage:
  python main.py ids
  python main.py ids --count 5 --worker 7
  python main.py decode 7158342716470505472
  python main.py token 7158342716470505472
  python main.py token 7158342716470505472 --ttl 600
  python main.py verify-token eyJhbGciOi...

Environment variables:
  SECRET_KEY   Signing key for token / verify-token (or DEBUG=true for a throwaway key).
  WORKER_ID    Default worker id for `ids` (0-1023).
"""

import argparse
import sys
from datetime import datetime, timezone

from pydantic import ValidationError

from auth.tokens import TokenService
from core.config import Settings, get_settings
from core.ids import MAX_WORKER_ID, ClockMovedBackwardsError, IdGenerator, decompose


def _load_settings() -> Settings | None:
    """get_settings(), printing the first configuration error instead of a traceback."""
    try:
        return get_settings()
    except ValidationError as e:
        first = e.errors()[0]
        print(f"  [!] Configuration error: {first['msg']}")
        return None


def _cmd_ids(args: argparse.Namespace) -> int:
    worker = args.worker
    if worker is None:
        settings = _load_settings()
        if settings is None:
            return 2
        worker = settings.worker_id
    try:
        generator = IdGenerator(worker_id=worker)
    except ValueError as e:
        print(f"  [!] {e}")
        return 2
    try:
        for _ in range(args.count):
            print(generator.next_id())
    except ClockMovedBackwardsError as e:
        print(f"  [!] {e}")
        return 1
    return 0


def _cmd_decode(args: argparse.Namespace) -> int:
    if args.id < 0 or args.id >= 1 << 63:
        print(f"  [!] {args.id} is not a 63-bit unsigned id.")
        return 2
    parts = decompose(args.id)
    issued = datetime.fromtimestamp(parts.timestamp_ms / 1000, tz=timezone.utc)
    print(f"  timestamp : {parts.timestamp_ms} ({issued.isoformat()})")
    print(f"  worker_id : {parts.worker_id}")
    print(f"  sequence  : {parts.sequence}")
    return 0


def _cmd_token(args: argparse.Namespace) -> int:
    settings = _load_settings()
    if settings is None:
        return 2
    tokens = TokenService(settings.secret_key, args.ttl or settings.token_expire_seconds)
    print(tokens.issue(args.account_id))
    return 0


def _cmd_verify_token(args: argparse.Namespace) -> int:
    settings = _load_settings()
    if settings is None:
        return 2
    tokens = TokenService(settings.secret_key, settings.token_expire_seconds)
    account_id = tokens.validate(args.token)
    if account_id is None:
        print("  [!] invalid or expired token")
        return 1
    print(account_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cypress identity core -- id generation and session token tooling.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ids = sub.add_parser("ids", help="Generate unique account ids")
    ids.add_argument("--count", "-n", type=int, default=1, help="How many ids to print (default 1)")
    ids.add_argument("--worker", "-w", type=int, default=None, help=f"Worker id 0-{MAX_WORKER_ID} (default WORKER_ID)")
    ids.set_defaults(func=_cmd_ids)

    decode = sub.add_parser("decode", help="Split an id into timestamp, worker id, and sequence")
    decode.add_argument("id", type=int)
    decode.set_defaults(func=_cmd_decode)

    token = sub.add_parser("token", help="Mint a session token for an account id")
    token.add_argument("account_id", type=int)
    token.add_argument("--ttl", type=int, default=0, help="Lifetime in seconds (default TOKEN_EXPIRE_SECONDS)")
    token.set_defaults(func=_cmd_token)

    verify = sub.add_parser("verify-token", help="Print the account id a token is valid for")
    verify.add_argument("token")
    verify.set_defaults(func=_cmd_verify_token)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
