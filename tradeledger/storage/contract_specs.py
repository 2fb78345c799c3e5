"""
Futures contract specification lookups.

``ContractSpecCache`` is a bounded LRU in front of the repository.  It is
constructed by the caller and passed in explicitly; there is no module-level
cache.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import asdict
from typing import Optional, Tuple

from sqlalchemy import or_

from tradeledger.database.models import FuturesContractSpec as ContractSpecRow
from tradeledger.models.futures import ContractSpec

logger = logging.getLogger(__name__)

_SPEC_FIELDS = tuple(ContractSpec.__dataclass_fields__)


class ContractSpecRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def get_by_symbol(self, symbol: str, user_id: Optional[str] = None) -> Optional[ContractSpec]:
        """Active spec for a root symbol; a user's own spec overrides the shared one."""
        with self.db.get_session() as session:
            query = session.query(ContractSpecRow).filter(
                ContractSpecRow.symbol == symbol.upper(),
                ContractSpecRow.is_active.is_(True),
            )
            if user_id:
                query = query.filter(or_(ContractSpecRow.user_id == user_id, ContractSpecRow.user_id.is_(None)))
            else:
                query = query.filter(ContractSpecRow.user_id.is_(None))
            rows = query.all()
            if not rows:
                return None
            # User-specific rows sort ahead of the shared default
            row = sorted(rows, key=lambda r: r.user_id is None)[0]
            return ContractSpec(**{name: getattr(row, name) for name in _SPEC_FIELDS})

    def upsert(self, spec: ContractSpec) -> ContractSpec:
        with self.db.get_session() as session:
            query = session.query(ContractSpecRow).filter(ContractSpecRow.symbol == spec.symbol.upper())
            if spec.user_id:
                query = query.filter(ContractSpecRow.user_id == spec.user_id)
            else:
                query = query.filter(ContractSpecRow.user_id.is_(None))
            row = query.first()
            values = asdict(spec)
            values["symbol"] = spec.symbol.upper()
            if row is None:
                session.add(ContractSpecRow(id=str(uuid.uuid4()), **values))
            else:
                for name, value in values.items():
                    setattr(row, name, value)
        return spec


class ContractSpecCache:
    """Bounded LRU of contract specs keyed by (symbol, user_id).

    Misses are not cached, so a spec added later is picked up.
    """

    def __init__(self, repository: ContractSpecRepository, max_size: int = 128):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.repository = repository
        self.max_size = max_size
        self._entries: "OrderedDict[Tuple[str, Optional[str]], ContractSpec]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, symbol: str, user_id: Optional[str] = None) -> Optional[ContractSpec]:
        key = (symbol.upper(), user_id)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]

        spec = self.repository.get_by_symbol(symbol, user_id)
        if spec is None:
            logger.debug("No contract spec for %s (user %s)", symbol, user_id)
            return None

        with self._lock:
            self._entries[key] = spec
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
        return spec

    def invalidate(self, symbol: Optional[str] = None):
        with self._lock:
            if symbol is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if k[0] == symbol.upper()]:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
