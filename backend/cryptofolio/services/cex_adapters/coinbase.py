"""Coinbase CEX adapter."""
from typing import List, Optional, Tuple
import logging
import re
from cryptofolio.services.cex_adapters.base import CexAdapter, content_source_id, parse_number
from cryptofolio.models.transaction import Transaction, TransactionType

logger = logging.getLogger(__name__)

# "Converted 0.5 ETH to 812.34 USDC"
CONVERT_NOTE = re.compile(r"Converted\s+([\d.,]+)\s+(\S+)\s+to\s+([\d.,]+)\s+(\S+)", re.IGNORECASE)

REWARD_TYPES = {"rewards income", "staking income", "inflation reward", "coinbase earn", "interest"}
AIRDROP_TYPES = {"learning reward"}
BUY_TYPES = {"buy", "advanced trade buy"}
SELL_TYPES = {"sell", "advanced trade sell"}
INCOMING_TYPES = {"receive", "deposit"}
OUTGOING_TYPES = {"send", "withdrawal"}


def _first(row: dict, *columns: str) -> str:
    for column in columns:
        if row.get(column):
            return row[column]
    return ""


class CoinbaseAdapter(CexAdapter):
    """Adapter for Coinbase transaction history exports (old and new header layouts)."""
    exchange = "coinbase"

    def parse_csv(self, csv_content: str) -> List[Transaction]:
        """
        Parse Coinbase CSV export.

        Coinbase CSV format (Transactions):
        - [ID,] Timestamp, Transaction Type, Asset, Quantity Transacted, Spot Price Currency,
          Spot Price at Transaction, Subtotal, Total (inclusive of fees), Fees, Notes
        """
        rows = self.read_rows(csv_content, required=["Timestamp", "Transaction Type", "Asset"])
        transactions = []
        for row in rows:
            transaction = self._parse_row(row)
            if transaction is not None:
                transactions.append(transaction)
        logger.info(f"[COINBASE] Parsed {len(transactions)} transactions from {len(rows)} rows")
        return transactions

    def _parse_row(self, row: dict) -> Optional[Transaction]:
        tx_type = row.get("Transaction Type", "").strip().lower()
        asset = row.get("Asset", "").strip().upper()
        quantity = abs(parse_number(row.get("Quantity Transacted")))
        if not asset or quantity <= 0:
            return None

        currency = _first(row, "Spot Price Currency", "Price Currency").upper()
        spot_price = parse_number(_first(row, "Spot Price at Transaction", "Price at Transaction"))
        subtotal = abs(parse_number(row.get("Subtotal")))
        total = abs(parse_number(_first(row, "Total (inclusive of fees)", "Total (inclusive of fees and/or spread)")))
        fees = abs(parse_number(_first(row, "Fees", "Fees and/or Spread")))
        in_eur = currency == "EUR"

        values = {
            "sourceId": row.get("ID") or content_source_id(row),
            "timestamp": row.get("Timestamp"),
            "priceEUR": spot_price if in_eur else 0.0,
            "valueEUR": (subtotal or quantity * spot_price) if in_eur else 0.0,
            "feeCoin": currency if fees else "",
            "feeAmount": fees,
            "feeEUR": fees if in_eur else 0.0,
            "notes": row.get("Notes", ""),
        }

        if tx_type in BUY_TYPES:
            values.update(
                type=TransactionType.TRADE,
                coinIn=asset, amountIn=quantity,
                coinOut=currency, amountOut=total or subtotal,
            )
        elif tx_type in SELL_TYPES:
            values.update(
                type=TransactionType.TRADE,
                coinIn=currency, amountIn=total or subtotal,
                coinOut=asset, amountOut=quantity,
            )
            if in_eur:
                values["priceEUR"] = 1.0
        elif tx_type == "convert":
            target = self._convert_target(row.get("Notes", ""))
            if target is None:
                logger.debug(f"[COINBASE] Convert without parsable note: {row.get('Notes')!r}")
                return None
            coin_in, amount_in = target
            values.update(
                type=TransactionType.TRADE,
                coinIn=coin_in, amountIn=amount_in,
                coinOut=asset, amountOut=quantity,
            )
            # priceEUR belongs to the primary (incoming) asset
            if in_eur and amount_in:
                values["priceEUR"] = values["valueEUR"] / amount_in
        elif tx_type in REWARD_TYPES or tx_type in AIRDROP_TYPES:
            values.update(
                type=TransactionType.AIRDROP if tx_type in AIRDROP_TYPES else TransactionType.STAKING_REWARD,
                coinIn=asset, amountIn=quantity,
            )
        elif tx_type in INCOMING_TYPES:
            values.update(type=TransactionType.DEPOSIT, coinIn=asset, amountIn=quantity)
        elif tx_type in OUTGOING_TYPES:
            values.update(type=TransactionType.WITHDRAWAL, coinOut=asset, amountOut=quantity)
        else:
            logger.debug(f"[COINBASE] Skipping unsupported type {tx_type!r}")
            return None

        return self.make_transaction(**values)

    @staticmethod
    def _convert_target(notes: str) -> Optional[Tuple[str, float]]:
        match = CONVERT_NOTE.search(notes or "")
        if match is None:
            return None
        return match.group(4).upper(), parse_number(match.group(3))

    def get_supported_csv_formats(self) -> List[str]:
        """Return supported CSV format versions."""
        return ["transactions"]
