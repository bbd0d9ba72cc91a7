"""Balance snapshot model."""
from typing import Any, List, Mapping, Optional
from pydantic import BaseModel, Field
from cryptofolio.models.transaction import ParseResult
from cryptofolio.utils.parsing import coerce_float, coerce_str, coerce_timestamp_ms, now_ms, pick


class Balance(BaseModel):
    """Point-in-time holding of one coin on one chain for one source."""
    coin: str = Field(default="", description="Ticker, e.g. BTC")
    name: str = Field(default="")
    amount: float = Field(default=0.0, ge=0)
    source: str = Field(default="", description="Exchange name or wallet_<address>")
    chain: str = Field(default="")
    contract_address: str = Field(default="", alias="contractAddress")
    price_eur: float = Field(default=0.0, alias="priceEUR")
    value_eur: float = Field(default=0.0, alias="valueEUR")
    last_update: int = Field(default_factory=now_ms, alias="lastUpdate")

    class Config:
        populate_by_name = True

    @property
    def key(self) -> str:
        return balance_key(self.coin, self.chain, self.source)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def balance_key(coin: str, chain: str, source: str) -> str:
    """Store key, e.g. ``ETH_eth_wallet_0xabc``."""
    return f"{coin}_{chain}_{source}"


def parse_balance(data: Optional[Mapping[str, Any]] = None) -> ParseResult[Balance]:
    data = data or {}
    warnings: List[str] = []
    coin = coerce_str(pick(data, "coin"), "coin", warnings)
    values = {
        "coin": coin,
        "name": coerce_str(pick(data, "name"), "name", warnings) or coin,
        "amount": coerce_float(pick(data, "amount"), "amount", warnings, non_negative=True),
        "source": coerce_str(pick(data, "source"), "source", warnings),
        "chain": coerce_str(pick(data, "chain"), "chain", warnings),
        "contract_address": coerce_str(pick(data, "contractAddress", "contract_address"), "contractAddress", warnings),
        "price_eur": coerce_float(pick(data, "priceEUR", "price_eur"), "priceEUR", warnings, non_negative=True),
        "value_eur": coerce_float(pick(data, "valueEUR", "value_eur"), "valueEUR", warnings, non_negative=True),
    }
    last_update = coerce_timestamp_ms(pick(data, "lastUpdate", "last_update"), "lastUpdate", warnings)
    if last_update is not None:
        values["last_update"] = last_update
    return ParseResult(record=Balance(**values), warnings=warnings)


def create_balance(data: Optional[Mapping[str, Any]] = None) -> Balance:
    return parse_balance(data).record
