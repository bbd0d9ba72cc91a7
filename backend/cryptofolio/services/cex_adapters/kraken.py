"""Kraken CEX adapter."""
from typing import Dict, List, Optional
import logging
from cryptofolio.services.cex_adapters.base import FIAT_CURRENCIES, CexAdapter, parse_number
from cryptofolio.models.transaction import Transaction, TransactionType

logger = logging.getLogger(__name__)

# Kraken legacy asset codes
ASSET_MAP = {
    "XXBT": "BTC",
    "XBT": "BTC",
    "XETH": "ETH",
    "XXDG": "DOGE",
    "XDG": "DOGE",
    "XXRP": "XRP",
    "XXLM": "XLM",
    "XLTC": "LTC",
    "XETC": "ETC",
    "XZEC": "ZEC",
    "XXMR": "XMR",
    "ZEUR": "EUR",
    "ZUSD": "USD",
    "ZGBP": "GBP",
    "ZCHF": "CHF",
    "ETH2": "ETH",
}

TRADE_TYPES = {"trade", "spend", "receive"}
REWARD_TYPES = {"staking", "earn", "reward", "dividend"}


def normalize_asset(asset: str) -> str:
    """XXBT -> BTC, ETH2.S -> ETH, DOT.S -> DOT, USDC.M -> USDC."""
    code = (asset or "").strip().upper()
    code = code.split(".", 1)[0]
    return ASSET_MAP.get(code, code)


class KrakenAdapter(CexAdapter):
    """Adapter for Kraken ledger exports.

    Trade legs share a ``refid``; one outgoing and one incoming leg become a
    single ``trade`` row keyed by that refid.
    """
    exchange = "kraken"

    def parse_csv(self, csv_content: str) -> List[Transaction]:
        """
        Parse Kraken CSV export.

        Kraken CSV format (Ledgers):
        - txid, refid, time, type, subtype, aclass, asset, wallet, amount, fee, balance
        """
        rows = self.read_rows(csv_content, required=["refid", "asset", "amount"])
        transactions: List[Transaction] = []
        trade_groups: Dict[str, List[dict]] = {}

        for row in rows:
            # Pending duplicates are exported without a txid
            if not row.get("txid"):
                continue
            row_type = row.get("type", "").lower()
            if row_type in TRADE_TYPES:
                trade_groups.setdefault(row.get("refid") or row["txid"], []).append(row)
                continue
            transaction = self._parse_single(row)
            if transaction is not None:
                transactions.append(transaction)

        for refid, legs in trade_groups.items():
            transactions.extend(self._parse_trade(refid, legs))

        logger.info(f"[KRAKEN] Parsed {len(transactions)} transactions from {len(rows)} rows")
        return transactions

    def _parse_single(self, row: dict) -> Optional[Transaction]:
        row_type = row.get("type", "").lower()
        subtype = row.get("subtype", "").lower()
        asset = normalize_asset(row.get("asset"))
        amount = parse_number(row.get("amount"))
        fee = abs(parse_number(row.get("fee")))

        if row_type == "transfer" or subtype in ("spottostaking", "stakingfromspot", "stakingtospot", "spotfromstaking"):
            # Internal move between Kraken sub-wallets
            return None

        if row_type in REWARD_TYPES and amount > 0:
            tx_type = TransactionType.STAKING_REWARD
        elif amount > 0:
            tx_type = TransactionType.DEPOSIT
        elif amount < 0:
            tx_type = TransactionType.WITHDRAWAL
        elif fee > 0:
            tx_type = TransactionType.FEE
        else:
            return None

        incoming = amount > 0
        values = {
            "sourceId": row["txid"],
            "timestamp": row.get("time"),
            "type": tx_type,
            "coinIn": asset if incoming else "",
            "amountIn": amount if incoming else 0,
            "coinOut": "" if incoming else asset,
            "amountOut": 0 if incoming else abs(amount),
            "feeCoin": asset if fee else "",
            "feeAmount": fee,
            "notes": f"Kraken {row_type}" + (f"/{subtype}" if subtype else ""),
        }
        if tx_type == TransactionType.FEE:
            values.update(coinOut=asset, amountOut=fee)
        if asset == "EUR":
            values["valueEUR"] = abs(amount)
            values["priceEUR"] = 1.0
        return self.make_transaction(**values)

    def _parse_trade(self, refid: str, legs: List[dict]) -> List[Transaction]:
        outgoing = [leg for leg in legs if parse_number(leg.get("amount")) < 0]
        incoming = [leg for leg in legs if parse_number(leg.get("amount")) > 0]

        if len(outgoing) != 1 or len(incoming) != 1:
            # Unpaired legs fall back to plain movements
            return [tx for tx in (self._parse_single({**leg, "type": "unpaired"}) for leg in legs) if tx is not None]

        out_leg, in_leg = outgoing[0], incoming[0]
        coin_out = normalize_asset(out_leg.get("asset"))
        coin_in = normalize_asset(in_leg.get("asset"))
        amount_out = abs(parse_number(out_leg.get("amount")))
        amount_in = parse_number(in_leg.get("amount"))

        fee_coin, fee_amount = "", 0.0
        for leg in (in_leg, out_leg):
            fee = abs(parse_number(leg.get("fee")))
            if fee > 0:
                fee_coin, fee_amount = normalize_asset(leg.get("asset")), fee
                break

        value_eur = 0.0
        if coin_out == "EUR":
            value_eur = amount_out
        elif coin_in == "EUR":
            value_eur = amount_in
        primary_amount = amount_in if coin_in not in FIAT_CURRENCIES else amount_out
        price_eur = value_eur / primary_amount if value_eur and primary_amount else 0.0
        fee_eur = fee_amount if fee_coin == "EUR" else 0.0

        return [self.make_transaction(
            sourceId=refid,
            timestamp=in_leg.get("time") or out_leg.get("time"),
            type=TransactionType.TRADE,
            coinIn=coin_in,
            amountIn=amount_in,
            coinOut=coin_out,
            amountOut=amount_out,
            valueEUR=value_eur,
            priceEUR=price_eur,
            feeCoin=fee_coin,
            feeAmount=fee_amount,
            feeEUR=fee_eur,
            notes=f"Kraken trade {coin_out} -> {coin_in}",
        )]

    def get_supported_csv_formats(self) -> List[str]:
        """Return supported CSV format versions."""
        return ["ledgers"]
