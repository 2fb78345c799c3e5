#!/usr/bin/env python3
"""Seed shared futures contract specs (margin figures are exchange defaults).

Usage:
    venv/bin/python scripts/seed_contract_specs.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from tradeledger.config import Settings
from tradeledger.database.db_manager import DatabaseManager
from tradeledger.models.futures import ContractSpec
from tradeledger.storage import ContractSpecRepository

DEFAULT_SPECS = [
    ContractSpec("ES", 50, 0.25, 12.50, 13200, 12000, "E-mini S&P 500", "CME"),
    ContractSpec("NQ", 20, 0.25, 5.00, 17600, 16000, "E-mini Nasdaq-100", "CME"),
    ContractSpec("YM", 5, 1.00, 5.00, 8800, 8000, "E-mini Dow ($5)", "CBOT"),
    ContractSpec("RTY", 50, 0.10, 5.00, 6600, 6000, "E-mini Russell 2000", "CME"),
    ContractSpec("MES", 5, 0.25, 1.25, 1320, 1200, "Micro E-mini S&P 500", "CME"),
    ContractSpec("MNQ", 2, 0.25, 0.50, 1760, 1600, "Micro E-mini Nasdaq-100", "CME"),
    ContractSpec("CL", 1000, 0.01, 10.00, 6600, 6000, "Crude Oil", "NYMEX"),
    ContractSpec("NG", 10000, 0.001, 10.00, 3300, 3000, "Natural Gas", "NYMEX"),
    ContractSpec("GC", 100, 0.10, 10.00, 9900, 9000, "Gold", "COMEX"),
    ContractSpec("SI", 5000, 0.005, 25.00, 14300, 13000, "Silver", "COMEX"),
    ContractSpec("ZB", 1000, 0.03125, 31.25, 4400, 4000, "30-Year Treasury Bond", "CBOT"),
    ContractSpec("ZN", 1000, 0.015625, 15.625, 2200, 2000, "10-Year Treasury Note", "CBOT"),
    ContractSpec("ZC", 50, 0.25, 12.50, 1980, 1800, "Corn", "CBOT"),
]


def seed_contract_specs(db: DatabaseManager) -> int:
    repository = ContractSpecRepository(db)
    for spec in DEFAULT_SPECS:
        repository.upsert(spec)
    return len(DEFAULT_SPECS)


if __name__ == "__main__":
    settings = Settings.from_env()
    db = DatabaseManager(settings.database_url)
    db.ensure_initialized()
    count = seed_contract_specs(db)
    logger.info(f"Seeded {count} contract specs")
