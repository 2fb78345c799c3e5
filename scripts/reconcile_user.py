#!/usr/bin/env python3
"""Run one reconciliation pass for a user.

Usage:
    venv/bin/python scripts/reconcile_user.py <user_id>
    venv/bin/python scripts/reconcile_user.py <user_id> --import-id <id> --as-of 2025-06-30
"""

import argparse
import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from tradeledger.config import Settings
from tradeledger.database.db_manager import DatabaseManager
from tradeledger.errors import ReconciliationError
from tradeledger.logging_setup import configure_logging
from tradeledger.pipeline.orchestrator import ReconciliationEngine
from tradeledger.storage import ContractSpecCache, Storage


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile a user's transactions into the ledger")
    parser.add_argument("user_id")
    parser.add_argument("--import-id", default=None, help="Only match transactions from this import")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Expiration cutoff date")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings, name="reconcile")

    db = DatabaseManager(settings.database_url)
    db.ensure_initialized()
    storage = Storage(db)
    engine = ReconciliationEngine(
        storage,
        spec_cache=ContractSpecCache(storage.contract_specs, max_size=settings.contract_spec_cache_size),
    )

    try:
        result = engine.reconcile(args.user_id, import_id=args.import_id, as_of=args.as_of)
    except ReconciliationError as exc:
        logger.error(f"{type(exc).__name__}: {exc.message} {exc.context}")
        return 1

    print(f"Positions created:   {result.matching.positions_created}")
    print(f"Positions updated:   {result.matching.positions_updated}")
    print(f"Unmatched:           {result.matching.unmatched_count}")
    print(f"Assignments applied: {result.assignments.positions_updated}")
    print(f"Positions expired:   {result.expirations.positions_updated}")
    print(f"Strategies created:  {result.detection.strategies_created}")
    print(f"Strategies closed:   {result.strategies_closed}")
    print(f"Cash entries:        {result.cash.entries_created}")
    if result.balance:
        print(f"Total cash:          ${result.balance.total_cash:,.2f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
