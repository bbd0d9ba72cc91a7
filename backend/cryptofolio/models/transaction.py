"""Canonical transaction model shared by every producer and consumer."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Mapping, Optional, Tuple, TypeVar
import uuid
from pydantic import BaseModel, Field
from cryptofolio.utils.parsing import (
    coerce_float,
    coerce_int,
    coerce_str,
    coerce_timestamp_ms,
    iso_from_ms,
    now_ms,
    pick,
    year_from_ms,
)

T = TypeVar("T")


class TransactionType(str, Enum):
    """Transaction type enumeration."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRADE = "trade"
    FEE = "fee"
    STAKING_REWARD = "staking_reward"
    STAKING = "staking"
    AIRDROP = "airdrop"
    UNKNOWN = "unknown"


# Loose vocabulary some producers emit
TYPE_ALIASES = {
    "receive": TransactionType.DEPOSIT,
    "send": TransactionType.WITHDRAWAL,
    "swap": TransactionType.TRADE,
    "reward": TransactionType.STAKING_REWARD,
}


class Transaction(BaseModel):
    """Unified transaction model for all sources.

    Immutable once created. The JSON wire format uses the camelCase aliases and
    always carries every field, zero-valued numbers included.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique transaction identifier")
    source: str = Field(default="", description="Origin tag: exchange name or wallet_<address>")
    source_id: str = Field(default="", alias="sourceId", description="Origin's own identifier")

    timestamp: int = Field(default_factory=now_ms, description="Transaction time, epoch millis")
    date: str = Field(default="", description="ISO-8601 UTC form of timestamp")
    year: int = Field(default=0, description="Fiscal year of timestamp")

    type: TransactionType = Field(default=TransactionType.UNKNOWN, description="Type of transaction")

    coin_in: str = Field(default="", alias="coinIn")
    amount_in: float = Field(default=0.0, alias="amountIn", ge=0)
    coin_out: str = Field(default="", alias="coinOut")
    amount_out: float = Field(default=0.0, alias="amountOut", ge=0)

    # Filled lazily by the price service, 0 means unknown
    value_eur: float = Field(default=0.0, alias="valueEUR")
    price_eur: float = Field(default=0.0, alias="priceEUR")

    fee_coin: str = Field(default="", alias="feeCoin")
    fee_amount: float = Field(default=0.0, alias="feeAmount", ge=0)
    fee_eur: float = Field(default=0.0, alias="feeEUR")

    wallet: str = Field(default="", description="Wallet address, empty for exchanges")
    chain: str = Field(default="", description="Chain key, empty for exchanges")
    notes: str = Field(default="")

    imported_at: int = Field(default_factory=now_ms, alias="importedAt")
    verified: bool = Field(default=False)

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def dedup_key(self) -> Tuple[str, str]:
        return (self.source, self.source_id)

    @property
    def is_empty(self) -> bool:
        return self.amount_in == 0 and self.amount_out == 0 and self.fee_amount == 0

    @property
    def primary_coin(self) -> str:
        return self.coin_in if self.amount_in > 0 else self.coin_out

    @property
    def primary_amount(self) -> float:
        return self.amount_in if self.amount_in > 0 else self.amount_out

    def involves(self, coin: str) -> bool:
        return coin in (self.coin_in, self.coin_out)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


@dataclass
class ParseResult(Generic[T]):
    """A record built from untrusted input plus every coercion that happened."""
    record: T
    warnings: List[str] = field(default_factory=list)


def _parse_type(value: Any, warnings: List[str]) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    text = str(value or "").strip().lower()
    if not text:
        return TransactionType.UNKNOWN
    if text in TYPE_ALIASES:
        return TYPE_ALIASES[text]
    try:
        return TransactionType(text)
    except ValueError:
        warnings.append(f"type: unknown transaction type {value!r}")
        return TransactionType.UNKNOWN


def parse_transaction(data: Optional[Mapping[str, Any]] = None) -> ParseResult[Transaction]:
    """Build a Transaction from a loose dict, never raising.

    Accepts camelCase or snake_case keys. Unset fields get type defaults,
    numeric strings become floats, negative amounts are flipped.
    """
    data = data or {}
    warnings: List[str] = []

    timestamp = coerce_timestamp_ms(pick(data, "timestamp"), "timestamp", warnings)
    if timestamp is None:
        date_ts = coerce_timestamp_ms(pick(data, "date"), "date", warnings)
        timestamp = date_ts if date_ts is not None else now_ms()

    year = coerce_int(pick(data, "year"), "year", warnings)
    if not year:
        year = year_from_ms(timestamp)

    imported_at = coerce_timestamp_ms(pick(data, "importedAt", "imported_at"), "importedAt", warnings)

    values = {
        "source": coerce_str(pick(data, "source"), "source", warnings),
        "source_id": coerce_str(pick(data, "sourceId", "source_id"), "sourceId", warnings),
        "timestamp": timestamp,
        "date": iso_from_ms(timestamp),
        "year": year,
        "type": _parse_type(pick(data, "type"), warnings),
        "coin_in": coerce_str(pick(data, "coinIn", "coin_in"), "coinIn", warnings),
        "amount_in": coerce_float(pick(data, "amountIn", "amount_in"), "amountIn", warnings, non_negative=True),
        "coin_out": coerce_str(pick(data, "coinOut", "coin_out"), "coinOut", warnings),
        "amount_out": coerce_float(pick(data, "amountOut", "amount_out"), "amountOut", warnings, non_negative=True),
        "value_eur": coerce_float(pick(data, "valueEUR", "value_eur"), "valueEUR", warnings, non_negative=True),
        "price_eur": coerce_float(pick(data, "priceEUR", "price_eur"), "priceEUR", warnings, non_negative=True),
        "fee_coin": coerce_str(pick(data, "feeCoin", "fee_coin"), "feeCoin", warnings),
        "fee_amount": coerce_float(pick(data, "feeAmount", "fee_amount"), "feeAmount", warnings, non_negative=True),
        "fee_eur": coerce_float(pick(data, "feeEUR", "fee_eur"), "feeEUR", warnings, non_negative=True),
        "wallet": coerce_str(pick(data, "wallet"), "wallet", warnings),
        "chain": coerce_str(pick(data, "chain"), "chain", warnings),
        "notes": coerce_str(pick(data, "notes"), "notes", warnings),
        "verified": bool(pick(data, "verified") or False),
    }
    tx_id = pick(data, "id")
    if tx_id:
        values["id"] = str(tx_id)
    if imported_at is not None:
        values["imported_at"] = imported_at

    return ParseResult(record=Transaction(**values), warnings=warnings)


def create_transaction(data: Optional[Mapping[str, Any]] = None) -> Transaction:
    """Shortcut for parse_transaction when the warnings are not needed."""
    return parse_transaction(data).record
