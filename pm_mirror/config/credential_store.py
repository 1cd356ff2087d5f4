"""
Read-only lookup of stored CLOB API credentials, keyed by wallet address.

Values are serialized credential objects: {"apiKey", "apiSecret", "passphrase"}.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def get(self, wallet_address: str) -> Optional[str]:
        ...


class MemoryCredentialStore:
    """In-process store, mainly for tests and embedding."""

    def __init__(self, records: Optional[dict[str, str]] = None):
        self._records = {k.lower(): v for k, v in (records or {}).items()}

    def get(self, wallet_address: str) -> Optional[str]:
        return self._records.get(wallet_address.lower())


class JsonFileCredentialStore:
    """Credentials kept in a JSON file mapping wallet address -> credentials."""

    def __init__(self, path: str):
        self.path = Path(path)

    def get(self, wallet_address: str) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            records = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read credential store {self.path}: {e}")
            return None
        if not isinstance(records, dict):
            return None

        wanted = wallet_address.lower()
        for address, value in records.items():
            if address.lower() != wanted:
                continue
            # Entries may be stored either as a JSON string or as an object
            if isinstance(value, str):
                return value
            return json.dumps(value)
        return None
