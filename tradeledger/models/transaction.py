"""
Transaction records as a tagged union over asset type.

Each variant carries only the fields relevant to its asset class, so a stock
transaction never has a ``strike_price`` to be null.  ``transaction_from_row``
decodes a stored row (or any mapping) into the right variant.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from tradeledger.errors import ValidationFailureError


class AssetType(Enum):
    STOCK = "stock"
    OPTION = "option"
    CRYPTO = "crypto"
    FUTURES = "futures"
    CASH = "cash"


BUY_CODES = {"BUY", "BOT", "BTO", "BTC"}
SELL_CODES = {"SELL", "SLD", "STO", "STC"}

# Option codes -> (is_opening, is_long side affected)
OPTION_TRADE_CODES = {
    "BTO": (True, True),
    "STO": (True, False),
    "STC": (False, True),
    "BTC": (False, False),
}
ASSIGNMENT_CODE = "OASGN"
EXERCISE_CODE = "OEXCS"
EXPIRATION_CODE = "OEXP"
LIFECYCLE_CODES = {ASSIGNMENT_CODE, EXERCISE_CODE, EXPIRATION_CODE}

DEFAULT_OPTION_MULTIPLIER = 100.0


@dataclass
class BaseTransaction:
    """Fields shared by every brokerage event."""
    id: str
    user_id: str
    symbol: str
    transaction_code: str
    quantity: float
    amount: float
    activity_date: str
    price: float = 0.0
    fees: float = 0.0
    process_date: Optional[str] = None
    settle_date: Optional[str] = None
    position_id: Optional[str] = None
    import_id: Optional[str] = None
    batch_id: Optional[str] = None
    description: Optional[str] = None

    asset_type: ClassVar[AssetType]

    @property
    def abs_quantity(self) -> float:
        return abs(self.quantity or 0)

    @property
    def code(self) -> str:
        return (self.transaction_code or "").strip().upper()

    @property
    def is_buy(self) -> bool:
        """Buy direction from the code; falls back to the quantity sign."""
        if self.code in BUY_CODES:
            return True
        if self.code in SELL_CODES:
            return False
        return (self.quantity or 0) > 0

    @property
    def is_matched(self) -> bool:
        return self.position_id is not None

    def validate(self):
        if not self.quantity and self.asset_type is not AssetType.CASH:
            raise ValidationFailureError(
                f"Transaction {self.id} has zero quantity",
                {"transaction_id": self.id},
            )
        if not self.symbol:
            raise ValidationFailureError(
                f"Transaction {self.id} has no symbol",
                {"transaction_id": self.id},
            )

    def to_fields(self) -> Dict[str, Any]:
        """Flatten to column values, tagged with the asset type."""
        fields = asdict(self)
        fields["asset_type"] = self.asset_type.value
        return fields


@dataclass
class _DirectionalTransaction(BaseTransaction):
    """Buy opens and sell closes unless ``opens_position`` is overridden."""

    @property
    def opens_position(self) -> bool:
        return self.is_buy

    @property
    def side(self) -> str:
        """Side of the position this transaction opens or closes."""
        return "long" if self.is_buy == self.opens_position else "short"


@dataclass
class StockTransaction(_DirectionalTransaction):
    asset_type: ClassVar[AssetType] = AssetType.STOCK


@dataclass
class CryptoTransaction(_DirectionalTransaction):
    asset_type: ClassVar[AssetType] = AssetType.CRYPTO


@dataclass
class FuturesTransaction(_DirectionalTransaction):
    instrument: str = ""
    contract_month: Optional[str] = None
    is_opening: Optional[bool] = None

    asset_type: ClassVar[AssetType] = AssetType.FUTURES

    @property
    def opens_position(self) -> bool:
        if self.is_opening is not None:
            return self.is_opening
        return self.is_buy


@dataclass
class OptionTransaction(BaseTransaction):
    option_type: str = ""
    strike_price: Optional[float] = None
    expiration_date: Optional[str] = None
    is_opening: bool = True
    is_long: bool = True
    multiplier: float = DEFAULT_OPTION_MULTIPLIER

    asset_type: ClassVar[AssetType] = AssetType.OPTION

    @property
    def side(self) -> str:
        return "long" if self.is_long else "short"

    @property
    def is_buy(self) -> bool:
        """BTO and BTC buy; STO and STC sell."""
        return self.is_opening == self.is_long

    @property
    def is_lifecycle_event(self) -> bool:
        return self.code in LIFECYCLE_CODES

    @property
    def opens_position(self) -> bool:
        return self.is_opening

    def validate(self):
        super().validate()
        if self.option_type not in ("call", "put"):
            raise ValidationFailureError(
                f"Option transaction {self.id} has invalid option_type {self.option_type!r}",
                {"transaction_id": self.id},
            )
        if self.strike_price is None or self.expiration_date is None:
            raise ValidationFailureError(
                f"Option transaction {self.id} is missing strike or expiration",
                {"transaction_id": self.id},
            )
        expected = OPTION_TRADE_CODES.get(self.code)
        if expected is not None and expected != (self.is_opening, self.is_long):
            raise ValidationFailureError(
                f"Option transaction {self.id}: code {self.code} conflicts with "
                f"is_opening={self.is_opening} is_long={self.is_long}",
                {"transaction_id": self.id, "code": self.code},
            )


@dataclass
class CashTransaction(BaseTransaction):
    asset_type: ClassVar[AssetType] = AssetType.CASH


Transaction = Union[
    StockTransaction, OptionTransaction, CryptoTransaction, FuturesTransaction, CashTransaction
]

_VARIANTS = {
    AssetType.STOCK: StockTransaction,
    AssetType.OPTION: OptionTransaction,
    AssetType.CRYPTO: CryptoTransaction,
    AssetType.FUTURES: FuturesTransaction,
    AssetType.CASH: CashTransaction,
}


def _normalize_option_type(value: Optional[str]) -> str:
    if not value:
        return ""
    value = value.strip().lower()
    if value in ("c", "call"):
        return "call"
    if value in ("p", "put"):
        return "put"
    return value


def transaction_from_row(row: Mapping[str, Any]) -> Transaction:
    """Decode a stored transaction row into its asset-type variant.

    Raises:
        ValidationFailureError: unknown asset type.
    """
    try:
        asset_type = AssetType(row["asset_type"])
    except ValueError:
        raise ValidationFailureError(
            f"Unknown asset type {row['asset_type']!r}", {"transaction_id": row.get("id")}
        )

    common = dict(
        id=row["id"],
        user_id=row["user_id"],
        symbol=row.get("symbol") or row.get("instrument") or "",
        transaction_code=row.get("transaction_code") or "",
        quantity=row.get("quantity") or 0.0,
        amount=row.get("amount") or 0.0,
        activity_date=row["activity_date"],
        price=row.get("price") or 0.0,
        fees=row.get("fees") or 0.0,
        process_date=row.get("process_date"),
        settle_date=row.get("settle_date"),
        position_id=row.get("position_id"),
        import_id=row.get("import_id"),
        batch_id=row.get("batch_id"),
        description=row.get("description"),
    )

    if asset_type is AssetType.OPTION:
        is_long = row.get("is_long")
        is_opening = row.get("is_opening")
        code = (common["transaction_code"] or "").strip().upper()
        if code in OPTION_TRADE_CODES:
            # Flags are derivable from the code when the importer left them empty
            is_opening = OPTION_TRADE_CODES[code][0] if is_opening is None else is_opening
            is_long = OPTION_TRADE_CODES[code][1] if is_long is None else is_long
        return OptionTransaction(
            **common,
            option_type=_normalize_option_type(row.get("option_type")),
            strike_price=row.get("strike_price"),
            expiration_date=row.get("expiration_date"),
            is_opening=True if is_opening is None else bool(is_opening),
            is_long=True if is_long is None else bool(is_long),
            multiplier=row.get("multiplier") or DEFAULT_OPTION_MULTIPLIER,
        )
    if asset_type is AssetType.FUTURES:
        return FuturesTransaction(
            **common,
            instrument=row.get("instrument") or common["symbol"],
            contract_month=row.get("contract_month"),
            is_opening=row.get("is_opening"),
        )
    return _VARIANTS[asset_type](**common)
