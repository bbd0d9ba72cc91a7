"""Abstract base class for CEX adapters."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import csv
import hashlib
import json
import logging
from io import StringIO
from cryptofolio.models.transaction import Transaction, create_transaction
from cryptofolio.utils.errors import CexIntegrationError

logger = logging.getLogger(__name__)

FIAT_CURRENCIES = {"EUR", "USD", "GBP", "CHF"}


def content_source_id(row: Dict[str, Any]) -> str:
    """Stable id for rows the exchange exported without one."""
    payload = json.dumps(row, sort_keys=True, default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def parse_number(value: Any) -> float:
    """Exchange CSV number: tolerates currency signs, thousands separators and blanks."""
    text = str(value or "").strip()
    for token in ("€", "$", "£", "EUR", "USD", ","):
        text = text.replace(token, "")
    text = text.strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


class CexAdapter(ABC):
    """Abstract base class for CEX adapters."""
    exchange: str

    @abstractmethod
    def parse_csv(self, csv_content: str) -> List[Transaction]:
        """
        Parse CSV export from CEX.

        Args:
            csv_content: CSV file content as string

        Returns:
            List of normalized transactions
        """
        pass

    @abstractmethod
    def get_supported_csv_formats(self) -> List[str]:
        """Return list of supported CSV format versions."""
        pass

    def read_rows(self, csv_content: str, required: Optional[List[str]] = None) -> List[Dict[str, str]]:
        """DictReader rows starting at the header line, skipping any preamble."""
        lines = csv_content.lstrip("﻿").splitlines()
        start = 0
        if required:
            for i, line in enumerate(lines):
                if all(column in line for column in required):
                    start = i
                    break
            else:
                raise CexIntegrationError(
                    f"{self.exchange}: header with columns {', '.join(required)} not found"
                )
        reader = csv.DictReader(StringIO("\n".join(lines[start:])))
        return [{(k or "").strip(): (v or "").strip() for k, v in row.items()} for row in reader]

    def make_transaction(self, **values) -> Transaction:
        return create_transaction({"source": self.exchange, **values})
