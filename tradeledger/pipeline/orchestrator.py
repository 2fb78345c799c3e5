"""
Reconciliation orchestrator: one explicit pass per user run.

Stages run strictly in order because each reads what the previous wrote:

  1. match_transactions()                 FIFO Matcher
  2. process_assignments_and_exercises()  Lifecycle Resolver
  3. process_expirations()                Lifecycle Resolver
  4. detect_strategies()                  Strategy Pattern Detector
  5. reconcile_strategies()               strategy auto-close
  6. CashFlowTranslator.record_pending()  Cash Flow Translator
  7. recalculate_balance()                cash balance snapshot

Manual entry and bulk import both go through ``reconcile()``, so strategy
auto-close and multi-leg cash batching happen in exactly one place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Optional

from tradeledger.errors import InsufficientPositionError
from tradeledger.models.cash import CashBalance
from tradeledger.pipeline.cash_flow import CashFlowResult, CashFlowTranslator
from tradeledger.pipeline.fifo_matcher import MatchResult, match_transactions
from tradeledger.pipeline.lifecycle import (
    LifecycleResult,
    process_assignments_and_exercises,
    process_expirations,
    reconcile_strategies,
)
from tradeledger.pipeline.locks import UserLockRegistry
from tradeledger.pipeline.strategy_engine import DetectionResult, detect_strategies
from tradeledger.services.cash_balance_service import recalculate_balance

if TYPE_CHECKING:
    from tradeledger.storage import ContractSpecCache, Storage

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a full reconciliation run."""
    matching: MatchResult
    assignments: LifecycleResult
    expirations: LifecycleResult
    detection: DetectionResult
    strategies_closed: int
    cash: CashFlowResult
    balance: Optional[CashBalance]

    @property
    def changed(self) -> bool:
        return bool(
            self.matching.positions_created
            or self.matching.positions_updated
            or self.assignments.positions_updated
            or self.expirations.positions_updated
            or self.detection.strategies_created
            or self.strategies_closed
            or self.cash.entries_created
        )


class ReconciliationEngine:
    """Runs the reconciliation stages for one user at a time.

    Args:
        storage: Storage port bundle.
        spec_cache: Bounded contract-spec cache shared by matcher and translator.
        locks: Per-user lock registry; pass a shared one to serialize runs
            across engines in the same process.
    """

    def __init__(
        self,
        storage: "Storage",
        spec_cache: Optional["ContractSpecCache"] = None,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.storage = storage
        self.spec_cache = spec_cache
        self.locks = locks or UserLockRegistry()
        self.translator = CashFlowTranslator(storage, spec_cache)

    def reconcile(
        self,
        user_id: str,
        import_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> ReconcileResult:
        """Run every stage for ``user_id``.

        Raises:
            InsufficientPositionError: an oversell left the ledger inconsistent;
                later stages are not run.
            UnmatchedReferenceError: cash could not be fully recorded.
        """
        with self.locks.hold(user_id):
            logger.info("Reconciliation started for %s (import=%s)", user_id, import_id)

            logger.info("Stage 1: FIFO matching")
            try:
                matching = match_transactions(self.storage, user_id, import_id=import_id, spec_cache=self.spec_cache)
            except InsufficientPositionError:
                logger.error("Reconciliation for %s stopped after matching: oversell", user_id)
                raise

            logger.info("Stage 2: assignments and exercises")
            assignments = process_assignments_and_exercises(self.storage, user_id)

            logger.info("Stage 3: expirations")
            expirations = process_expirations(self.storage, user_id, as_of=as_of)

            logger.info("Stage 4: strategy detection")
            detection = detect_strategies(self.storage, user_id)

            logger.info("Stage 5: strategy close reconciliation")
            strategies_closed = reconcile_strategies(self.storage, user_id)

            logger.info("Stage 6: cash translation")
            cash = self.translator.record_pending(user_id)

            logger.info("Stage 7: cash balance")
            balance = recalculate_balance(self.storage, user_id, as_of=as_of)

            result = ReconcileResult(
                matching=matching,
                assignments=assignments,
                expirations=expirations,
                detection=detection,
                strategies_closed=strategies_closed,
                cash=cash,
                balance=balance,
            )
            logger.info("Reconciliation finished for %s (changed=%s)", user_id, result.changed)
            return result
