"""
Polygon RPC reader

Fetches blocks (with full transactions) and transaction receipts through web3.
The web3 calls are blocking and run in a worker thread.
"""

import asyncio
from collections.abc import Mapping
from typing import Any, Optional

from eth_utils import to_hex
from web3 import Web3
from web3.exceptions import BlockNotFound, TransactionNotFound


def _hex(value: Any) -> str:
    return value if isinstance(value, str) else to_hex(value)


def _transaction_fields(tx: Mapping) -> dict:
    """The fields the trade monitor reads, as plain hex strings."""
    calldata = tx.get("input", tx.get("data", b""))
    return {
        "hash": _hex(tx["hash"]),
        "to": tx.get("to"),
        "input": _hex(calldata),
    }


class PolygonRPC:
    """Async facade over a Web3 HTTP provider for block and receipt lookups."""

    def __init__(self, rpc_url: str, timeout: float = 30.0, web3: Optional[Web3] = None):
        self.rpc_url = rpc_url
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    async def get_block_with_transactions(self, block_number: int) -> Optional[dict]:
        """Block by number with full transaction objects, None if unknown."""
        return await asyncio.to_thread(self._get_block, block_number)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping]:
        """Receipt by hash, None while the transaction is pending."""
        return await asyncio.to_thread(self._get_receipt, tx_hash)

    def _get_block(self, block_number: int) -> Optional[dict]:
        try:
            block = self.web3.eth.get_block(block_number, full_transactions=True)
        except BlockNotFound:
            return None
        transactions = [
            _transaction_fields(tx) if isinstance(tx, Mapping) else _hex(tx)
            for tx in block["transactions"]
        ]
        return {"number": block["number"], "transactions": transactions}

    def _get_receipt(self, tx_hash: str) -> Optional[Mapping]:
        try:
            return self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None


def receipt_succeeded(receipt: Optional[Mapping]) -> bool:
    """True when the receipt reports status 1."""
    return bool(receipt) and receipt.get("status") == 1
