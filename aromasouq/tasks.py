"""Scheduled jobs.

    python -m aromasouq.tasks expire-coins [--batch-size N]
    python -m aromasouq.tasks reconcile [--max-attempts N]
"""

import argparse
import sys

import structlog

from aromasouq.database import SessionLocal
from aromasouq.models import registry
from aromasouq.services.reconciliation_service import ReconciliationService
from aromasouq.services.wallet_service import WalletService
from aromasouq.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def expire_coins(batch_size=None) -> int:
    db = SessionLocal()
    try:
        result = WalletService.expire_old_coins(db, batch_size=batch_size)
    finally:
        db.close()
    print(f"{result.message}, {result.coins_expired} coins removed")
    return 0


def reconcile(max_attempts=None) -> int:
    db = SessionLocal()
    try:
        result = ReconciliationService.replay_pending(db, max_attempts=max_attempts)
    finally:
        db.close()
    print(f"resolved={result.resolved} retried={result.retried} failed={result.failed}")
    return 1 if result.failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aromasouq.tasks", description="AromaSouq wallet jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    expire = subparsers.add_parser("expire-coins", help="Expire earned coins past their expiry date")
    expire.add_argument("--batch-size", type=int, default=None)

    replay = subparsers.add_parser("reconcile", help="Replay coin side effects that failed after commit")
    replay.add_argument("--max-attempts", type=int, default=None)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    registry.create_all()
    logger.info("Running task", command=args.command)

    if args.command == "expire-coins":
        return expire_coins(args.batch_size)
    return reconcile(args.max_attempts)


if __name__ == "__main__":
    sys.exit(main())
