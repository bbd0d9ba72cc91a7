"""Ledger store: the system of record for transactions and balances."""
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union
import asyncio
import json
import logging
import threading
from pydantic import ValidationError
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.models.balance import Balance, parse_balance
from cryptofolio.models.transaction import Transaction, TransactionType, parse_transaction
from cryptofolio.models.wallet import Wallet
from cryptofolio.services.persistence import DocumentStore, LocalSnapshot
from cryptofolio.utils.errors import PersistenceError
from cryptofolio.utils.parsing import now_ms

logger = logging.getLogger(__name__)

MAIN_DOC = "data"


def _chunk(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class LedgerStore:
    """In-memory collections of canonical records with durable persistence.

    One ``(source, sourceId)`` pair maps to at most one transaction; the first
    insert wins. Mutations schedule a debounced save, destructive operations
    persist before returning.
    """

    def __init__(
        self,
        remote: Optional[DocumentStore] = None,
        local: Optional[LocalSnapshot] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.remote = remote
        self.local = local or LocalSnapshot()

        self.transactions: List[Transaction] = []
        self.balances: Dict[str, Balance] = {}
        self.wallets: List[Wallet] = []
        self.exchanges: Dict[str, dict] = {}
        self.prices: Dict[str, dict] = {}
        self.historical_prices: Dict[str, float] = {}
        self.api_keys: Dict[str, Any] = {}
        self.selected_chains: List[str] = list(self.config.evm_default_chains)
        self.last_sync: Optional[int] = None
        self.loaded_from: Optional[str] = None

        self._keys: Set[Tuple[str, str]] = set()
        self._positions: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._dirty = False
        self._save_handle: Optional[asyncio.TimerHandle] = None
        self._save_task: Optional[asyncio.Task] = None
        self._save_lock = asyncio.Lock()
        self._persisted_chunks = 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def add_transaction(self, tx: Transaction) -> bool:
        """Insert unless the dedup key is taken; returns whether it was added."""
        if not tx.source or not tx.source_id:
            logger.debug(f"[LEDGER] Rejected transaction {tx.id}: missing source identity")
            return False
        if tx.is_empty:
            logger.debug(f"[LEDGER] Rejected transaction {tx.source}/{tx.source_id}: all amounts are zero")
            return False

        with self._lock:
            if tx.dedup_key in self._keys:
                return False
            if tx.id in self._positions:
                logger.warning(f"[LEDGER] Rejected transaction {tx.source}/{tx.source_id}: id {tx.id} already used")
                return False
            self._keys.add(tx.dedup_key)
            self._positions[tx.id] = len(self.transactions)
            self.transactions.append(tx)

        self._schedule_save()
        return True

    def add_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Returns the number actually inserted, not the input length."""
        transactions = list(transactions)
        added = sum(1 for tx in transactions if self.add_transaction(tx))
        logger.info(f"[LEDGER] Added {added}/{len(transactions)} transactions")
        return added

    def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        position = self._positions.get(tx_id)
        return self.transactions[position] if position is not None else None

    @staticmethod
    def _matches(
        tx: Transaction,
        source: Optional[str],
        year: Optional[int],
        coin: Optional[str],
        type: Optional[Union[TransactionType, str]],
    ) -> bool:
        if source is not None and tx.source != source:
            return False
        if year is not None and tx.year != year:
            return False
        if coin is not None and not tx.involves(coin):
            return False
        if type is not None and tx.type != TransactionType(type):
            return False
        return True

    def get_transactions(
        self,
        source: Optional[str] = None,
        year: Optional[int] = None,
        coin: Optional[str] = None,
        type: Optional[Union[TransactionType, str]] = None,
    ) -> List[Transaction]:
        """Filters compose conjunctively; newest first, ties keep insertion order."""
        result = [tx for tx in self.transactions if self._matches(tx, source, year, coin, type)]
        return sorted(result, key=lambda tx: tx.timestamp, reverse=True)

    def delete_transactions(
        self,
        source: Optional[str] = None,
        year: Optional[int] = None,
        coin: Optional[str] = None,
        type: Optional[Union[TransactionType, str]] = None,
    ) -> int:
        if source is None and year is None and coin is None and type is None:
            return 0
        with self._lock:
            before = len(self.transactions)
            self.transactions = [
                tx for tx in self.transactions if not self._matches(tx, source, year, coin, type)
            ]
            deleted = before - len(self.transactions)
            if deleted:
                self._reindex()
        if deleted:
            logger.info(f"[LEDGER] Deleted {deleted} transactions")
            self._schedule_save()
        return deleted

    def replace_valuation(
        self,
        tx_id: str,
        price_eur: Optional[float] = None,
        value_eur: Optional[float] = None,
        fee_eur: Optional[float] = None,
    ) -> bool:
        """Swap in a copy of a stored transaction carrying new EUR figures."""
        update = {
            name: value
            for name, value in (("price_eur", price_eur), ("value_eur", value_eur), ("fee_eur", fee_eur))
            if value is not None
        }
        with self._lock:
            position = self._positions.get(tx_id)
            if position is None or not update:
                return False
            self.transactions[position] = self.transactions[position].model_copy(update=update)
        self._schedule_save()
        return True

    def _reindex(self):
        self._keys = {tx.dedup_key for tx in self.transactions}
        self._positions = {tx.id: i for i, tx in enumerate(self.transactions)}

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def update_balance(self, key: str, data: Union[Balance, dict]):
        """Upsert: merge ``data`` over the existing entry and stamp the update time."""
        incoming = data.model_dump(by_alias=True) if isinstance(data, Balance) else dict(data)
        existing = self.balances.get(key)
        merged = existing.model_dump(by_alias=True) if existing else {}
        merged.update(incoming)
        merged["lastUpdate"] = now_ms()
        result = parse_balance(merged)
        if result.warnings:
            logger.debug(f"[LEDGER] Balance {key} coerced: {result.warnings}")
        self.balances[key] = result.record
        self._schedule_save()

    def get_balances(self) -> Dict[str, Balance]:
        return dict(self.balances)

    # ------------------------------------------------------------------
    # Wallets, exchanges, keys
    # ------------------------------------------------------------------

    def add_wallet(self, wallet: Wallet) -> bool:
        address = wallet.address.lower()
        if any(w.address.lower() == address for w in self.wallets):
            return False
        self.wallets.append(wallet)
        self._schedule_save()
        return True

    def get_wallets(self) -> List[Wallet]:
        return list(self.wallets)

    def touch_wallet(self, address: str):
        address = address.lower()
        for i, wallet in enumerate(self.wallets):
            if wallet.address.lower() == address:
                self.wallets[i] = wallet.model_copy(update={"last_sync": now_ms()})
        self.last_sync = now_ms()
        self._schedule_save()

    async def remove_wallet(self, address: str) -> bool:
        address = address.lower()
        if not any(w.address.lower() == address for w in self.wallets):
            return False
        await self.remove_source(address)
        return True

    async def remove_source(self, identifier: str) -> Tuple[int, int]:
        """Cascade-delete everything belonging to a wallet or exchange.

        Matching is a lowercase substring test on transaction ``source`` and
        ``wallet`` and on balance ``source`` and key, so ``0xabc`` also catches
        ``ETH_eth_wallet_0xabc``. Persists before returning.
        """
        needle = (identifier or "").strip().lower()
        if not needle:
            return (0, 0)

        with self._lock:
            before = len(self.transactions)
            self.transactions = [
                tx for tx in self.transactions
                if needle not in tx.wallet.lower() and needle not in tx.source.lower()
            ]
            tx_removed = before - len(self.transactions)
            self._reindex()

        balance_keys = [
            key for key, balance in self.balances.items()
            if needle in balance.source.lower() or needle in key.lower()
        ]
        for key in balance_keys:
            del self.balances[key]

        self.wallets = [w for w in self.wallets if w.address.lower() != needle]
        self.exchanges.pop(needle, None)

        logger.info(
            f"[LEDGER] Removed source {needle}: {len(balance_keys)} balances, {tx_removed} transactions"
        )
        await self.save_now()
        return (tx_removed, len(balance_keys))

    def set_exchange(self, name: str, data: dict):
        self.exchanges[name.lower()] = {**self.exchanges.get(name.lower(), {}), **data}
        self._schedule_save()

    def set_api_key(self, name: str, value: Union[str, List[str]]):
        if name == "moralis":
            keys = list(self.api_keys.get("moralis") or [])
            for key in value if isinstance(value, list) else [value]:
                if key and key not in keys:
                    keys.append(key)
            self.api_keys["moralis"] = keys
        else:
            self.api_keys[name] = value
        self._schedule_save()

    def get_api_key(self, name: str) -> Any:
        if name == "moralis":
            return list(self.api_keys.get("moralis") or [])
        return self.api_keys.get(name) or ""

    async def reset_all(self):
        """Drop every record and persist the empty state immediately."""
        with self._lock:
            self.transactions = []
            self._reindex()
        self.balances = {}
        self.wallets = []
        self.exchanges = {}
        self.prices.clear()
        self.historical_prices.clear()
        logger.info("[LEDGER] Full reset, all data deleted")
        await self.save_now()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def mark_dirty(self):
        """Schedule a debounced save after an external change (e.g. price cache)."""
        self._schedule_save()

    def _schedule_save(self):
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: flush() persists later
            return
        if self._save_handle is not None:
            self._save_handle.cancel()
        self._save_handle = loop.call_later(self.config.persist_debounce_seconds, self._start_save)

    def _start_save(self):
        self._save_handle = None
        self._save_task = asyncio.ensure_future(self.save_now())

    @property
    def has_pending_save(self) -> bool:
        return self._dirty

    async def flush(self):
        """Persist now if anything is pending."""
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        if self._dirty:
            await self.save_now()

    async def save_now(self):
        if self._save_handle is not None:
            self._save_handle.cancel()
            self._save_handle = None

        async with self._save_lock:
            data = self.to_document()
            self._dirty = False
            if self.remote is None:
                self.local.save(data)
                return
            try:
                await self._write_remote(data)
                self.last_sync = data["lastSync"]
                logger.info("[LEDGER] Saved to durable store")
            except Exception as e:
                self._dirty = True
                logger.error(f"[LEDGER] Save failed, keeping local backup only: {e}")
            self.local.save(data)

    async def _write_remote(self, data: dict):
        size = len(json.dumps(data).encode("utf-8"))
        chunks = 0
        if size > self.config.persist_max_document_bytes:
            logger.warning(f"[LEDGER] Document too large ({size // 1024}KB), splitting transactions")
            tx_chunks = _chunk(data["transactions"], self.config.persist_chunk_size)
            chunks = len(tx_chunks)
            for i, chunk in enumerate(tx_chunks):
                await self.remote.set(f"transactions_{i}", {
                    "transactions": chunk,
                    "chunkIndex": i,
                    "totalChunks": chunks,
                })
            await self.remote.set(MAIN_DOC, {**data, "transactions": [], "txChunks": chunks})
        else:
            await self.remote.set(MAIN_DOC, data)

        for stale in range(chunks, self._persisted_chunks):
            await self.remote.delete(f"transactions_{stale}")
        self._persisted_chunks = chunks

    async def _read_remote(self) -> Optional[dict]:
        main = await self.remote.get(MAIN_DOC)
        if main is None:
            return None
        chunks = int(main.get("txChunks") or 0)
        if not chunks:
            return main

        parts = []
        for i in range(chunks):
            part = await self.remote.get(f"transactions_{i}")
            if part is None:
                raise PersistenceError(f"Transaction chunk {i}/{chunks} missing")
            parts.append(part)
        parts.sort(key=lambda p: p.get("chunkIndex", 0))
        transactions = [tx for part in parts for tx in part.get("transactions", [])]
        self._persisted_chunks = chunks
        return {**main, "transactions": transactions}

    async def initialize(self) -> str:
        """Load state from the durable store, else from the local snapshot.

        The remote is tried exactly once and bounded by a timeout.
        """
        if self.remote is not None:
            try:
                data = await asyncio.wait_for(
                    self._read_remote(), timeout=self.config.persist_load_timeout_seconds
                )
            except Exception as e:
                logger.error(f"[LEDGER] Durable store unavailable, using local snapshot: {e}")
            else:
                if data is None:
                    logger.info("[LEDGER] No existing data, starting empty")
                else:
                    self.load_document(data)
                    logger.info(
                        f"[LEDGER] Loaded {len(self.transactions)} transactions, {len(self.wallets)} wallets"
                    )
                self.local.save(self.to_document())
                self.loaded_from = "remote"
                return self.loaded_from

        data = self.local.load()
        if data is not None:
            self.load_document(data)
            logger.info("[LEDGER] Loaded from local snapshot")
            self.loaded_from = "local"
        else:
            self.loaded_from = "empty"
        return self.loaded_from

    def load_document(self, data: dict):
        transactions = []
        for raw in data.get("transactions") or []:
            result = parse_transaction(raw)
            if result.warnings:
                logger.debug(f"[LEDGER] Stored transaction coerced: {result.warnings}")
            transactions.append(result.record)

        with self._lock:
            self.transactions = []
            self._reindex()
        for tx in transactions:
            # Reinsert through the dedup path so a corrupted snapshot cannot break the invariant
            if tx.dedup_key not in self._keys and tx.id not in self._positions:
                self._keys.add(tx.dedup_key)
                self._positions[tx.id] = len(self.transactions)
                self.transactions.append(tx)

        self.balances = {key: parse_balance(raw).record for key, raw in (data.get("balances") or {}).items()}

        self.wallets = []
        for raw in data.get("wallets") or []:
            try:
                self.wallets.append(Wallet.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"[LEDGER] Skipped invalid wallet entry: {e}")

        self.exchanges = dict(data.get("exchanges") or {})
        # Keep dict identity, the price service holds references to these
        self.prices.clear()
        self.prices.update(data.get("prices") or {})
        self.historical_prices.clear()
        self.historical_prices.update(data.get("historicalPrices") or {})
        self.api_keys = dict(data.get("apiKeys") or {})
        self.selected_chains = list(data.get("selectedChains") or self.config.evm_default_chains)
        self.last_sync = data.get("lastSync")

    def to_document(self) -> dict:
        return {
            "transactions": [tx.to_wire() for tx in self.transactions],
            "balances": {key: balance.to_wire() for key, balance in self.balances.items()},
            "wallets": [w.model_dump(by_alias=True, mode="json") for w in self.wallets],
            "exchanges": dict(self.exchanges),
            "prices": dict(self.prices),
            "historicalPrices": dict(self.historical_prices),
            "apiKeys": dict(self.api_keys),
            "selectedChains": list(self.selected_chains),
            "lastSync": now_ms(),
        }
