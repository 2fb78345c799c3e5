"""Futures contract specs and contract-symbol parsing."""

import re
from dataclasses import dataclass
from typing import Optional

# January through December
MONTH_CODES = "FGHJKMNQUVXZ"

_CONTRACT_RE = re.compile(rf"^([A-Z]{{1,4}})([{MONTH_CODES}])(\d{{2,4}})$")
_DESCRIPTION_MONTH_RE = re.compile(r"\b([A-Z]{3}\d{2,4})\b")


@dataclass(frozen=True)
class ContractSymbol:
    """Parsed contract code, e.g. ESH25 -> root ES, month H, year 25."""
    root: str
    month_code: str
    year: str

    @property
    def contract_month(self) -> str:
        return f"{self.month_code}{self.year[-2:]}"


@dataclass(frozen=True)
class ContractSpec:
    symbol: str
    multiplier: float
    tick_size: float
    tick_value: float
    initial_margin: Optional[float] = None
    maintenance_margin: Optional[float] = None
    name: Optional[str] = None
    exchange: Optional[str] = None
    user_id: Optional[str] = None


def parse_contract_symbol(code: str) -> Optional[ContractSymbol]:
    """Split a contract code into root, month code and year.

    Returns None when the code does not look like ``<root><month><year>``.
    """
    match = _CONTRACT_RE.match((code or "").strip().upper())
    if not match:
        return None
    return ContractSymbol(root=match.group(1), month_code=match.group(2), year=match.group(3))


def resolve_contract_month(instrument: str, description: Optional[str] = None) -> Optional[str]:
    """Contract month from the instrument code, else from a DEC24-style token in the description."""
    parsed = parse_contract_symbol(instrument)
    if parsed:
        return parsed.contract_month
    if description:
        match = _DESCRIPTION_MONTH_RE.search(description.upper())
        if match:
            return match.group(1)
    return None


def root_symbol(instrument: str) -> str:
    parsed = parse_contract_symbol(instrument)
    return parsed.root if parsed else (instrument or "").strip().upper()
