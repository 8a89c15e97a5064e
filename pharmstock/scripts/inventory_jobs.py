# pharmstock/scripts/inventory_jobs.py
"""
Scheduled inventory maintenance.

    python -m pharmstock.scripts.inventory_jobs refresh-expiry [--store-id 1]
    python -m pharmstock.scripts.inventory_jobs sync-store --store-id 1
    python -m pharmstock.scripts.inventory_jobs migrate-legacy --store-id 1
    python -m pharmstock.scripts.inventory_jobs purge-ledger [--days 365]
    python -m pharmstock.scripts.inventory_jobs check-ledger [--store-id 1]
"""
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from pharmstock.core.config import settings
from pharmstock.core.logging_config import configure_logging
from pharmstock.db.session import get_or_create_engine, make_session_factory
from pharmstock.services.engine import InventoryEngine

logger = logging.getLogger(__name__)


def _engine(db_uri: str) -> InventoryEngine:
    return InventoryEngine(make_session_factory(get_or_create_engine(db_uri)))


def _require_store(args) -> int:
    if args.store_id is None:
        raise SystemExit(f"{args.command} requires --store-id")
    return args.store_id


def run(args: argparse.Namespace) -> int:
    engine = _engine(args.db_uri)

    if args.command == "refresh-expiry":
        out = engine.refresh_expired_status(args.store_id)
        print(f"Expired batches: matched={out.matched} newly_flagged={out.modified}")
        return 0

    if args.command == "sync-store":
        out = engine.synchronize_store(_require_store(args))
        print(f"Synchronized {out.medicine_count} medicines, corrected drift on {out.drifted_count}")
        return 0

    if args.command == "migrate-legacy":
        out = engine.migrate_legacy_stock(_require_store(args))
        print(f"Migrated {len(out.migrated_medicine_ids)} medicines, skipped {out.skipped}")
        return 0

    if args.command == "purge-ledger":
        out = engine.purge_ledger(args.days, args.store_id)
        print(f"Deleted {out.deleted} ledger entries older than {out.cutoff:%Y-%m-%d %H:%M}")
        return 0

    if args.command == "check-ledger":
        rows = engine.find_ledger_drift(args.store_id)
        for r in rows:
            print(
                f"#{r.id} medicine={r.medicine_id} {r.unit_type}: "
                f"{r.previous_qty} {r.quantity_changed:+d} != {r.new_qty}"
            )
        print(f"{len(rows)} inconsistent ledger entries")
        return 1 if rows else 0

    raise SystemExit(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Pharmacy inventory maintenance jobs")
    ap.add_argument("--db-uri", default=settings.SQLALCHEMY_DATABASE_URI)
    ap.add_argument("--log-level", default=None)

    sub = ap.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("refresh-expiry", "flag batches whose expiry date has passed"),
        ("sync-store", "recompute medicine stock from active batches"),
        ("migrate-legacy", "create batches for medicines with flat legacy stock"),
        ("check-ledger", "list ledger rows where new != previous + change"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--store-id", type=int, default=None)

    p = sub.add_parser("purge-ledger", help="delete ledger rows past retention")
    p.add_argument("--store-id", type=int, default=None)
    p.add_argument("--days", type=int, default=None, help=f"default {settings.LEDGER_RETENTION_DAYS}")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return run(args)
    except Exception:
        logger.exception("inventory job %s failed", args.command)
        raise


if __name__ == "__main__":
    raise SystemExit(main())
