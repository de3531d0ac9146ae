#!/usr/bin/env python3
"""One-shot rehash of legacy plaintext passwords into bcrypt hashes."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from clinic_auth.auth.models import KIND_PRECEDENCE, Principal, PrincipalKind
from clinic_auth.auth.repository import PrincipalRepository
from clinic_auth.auth.storage import connect_mongo
from clinic_auth.core.config import AppConfig
from clinic_auth.core.security import PasswordHasher, is_legacy_password

DEFAULT_RUNTIME_DIR = Path("runtime")
MAX_PREVIEW_ITEMS = 10


def _parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Find and rehash principals whose stored password is not bcrypt."
    )
    parser.add_argument(
        "--runtime-dir",
        type=Path,
        default=DEFAULT_RUNTIME_DIR,
        help="Runtime directory holding the JSON fallback store.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only print a report of legacy passwords per kind.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate legacy values and print the plan without writing.",
    )
    return parser.parse_args()


def _collect_legacy(repo: PrincipalRepository) -> dict[PrincipalKind, list[Principal]]:
    """Group principals with legacy passwords by kind."""
    return {
        kind: [p for p in repo.iter_principals(kind) if is_legacy_password(p.password_hash)]
        for kind in KIND_PRECEDENCE
    }


def _print_check_report(legacy: dict[PrincipalKind, list[Principal]]) -> None:
    for kind, principals in legacy.items():
        print(f"{kind}: {len(principals)} legacy password(s)")
        if principals:
            preview = ", ".join(p.id for p in principals[:MAX_PREVIEW_ITEMS])
            print(f"  preview: {preview}")


def _upgrade(
    repo: PrincipalRepository,
    hasher: PasswordHasher,
    legacy: dict[PrincipalKind, list[Principal]],
    dry_run: bool,
) -> tuple[int, int]:
    """Rehash every legacy value; values bcrypt cannot take are skipped."""
    upgraded = 0
    skipped = 0
    for kind, principals in legacy.items():
        for principal in principals:
            if len(principal.password_hash.encode("utf-8")) > 72:
                skipped += 1
                continue
            if not dry_run:
                repo.rewrite_password(
                    principal.id, hasher.hash(principal.password_hash), kind=kind
                )
            upgraded += 1
    return upgraded, skipped


def main() -> int:
    """Execute check or upgrade flow."""
    args = _parse_args()
    load_dotenv()
    config = AppConfig.from_env()

    try:
        db = connect_mongo(config.store)
        repo = PrincipalRepository(db=db, runtime_dir=args.runtime_dir)
        legacy = _collect_legacy(repo)

        if args.check:
            _print_check_report(legacy)
            return 0

        upgraded, skipped = _upgrade(
            repo, PasswordHasher(config.auth.hash_cost), legacy, args.dry_run
        )
        print(f"Legacy passwords found: {sum(len(v) for v in legacy.values())}")
        print(f"Upgraded: {upgraded}")
        print(f"Skipped (over 72 bytes): {skipped}")
        print(f"Mode: {'dry-run' if args.dry_run else 'write'}")
        return 0
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
