"""
Trade Monitor Module for PM Mirror Bot

Watches new Polygon blocks for CTF Exchange settlements in which the target
wallet was a maker, and streams them as signals:

    TradeEvent | TransportError | TransportClosed

Block handlers run as independent tasks so a slow block never holds up the
next notification. They are not ordered against each other; this relies on
the target wallet trading rarely compared to block production.
"""

import asyncio
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Union

import websockets

from pm_mirror.services.order_decoder import decode_match_orders
from pm_mirror.services.polygon_rpc import PolygonRPC, receipt_succeeded

logger = logging.getLogger(__name__)

MIN_CALLDATA_LENGTH = 10  # "0x" + 4-byte selector
SEEN_TX_LIMIT = 10_000
ABNORMAL_CLOSURE = 1006


class SubscriptionError(Exception):
    """The node rejected or broke the newHeads subscription."""

    def __init__(self, error):
        super().__init__(f"eth_subscribe failed: {error}")
        self.error = error


@dataclass(frozen=True)
class TradeEvent:
    """A confirmed settlement where the target wallet was a maker."""
    block_number: int
    tx_hash: str
    token_id: int
    side: int
    maker_amount: int
    taker_amount: int

    def to_dict(self) -> dict:
        return {
            "block_number": self.block_number,
            "tx_hash": self.tx_hash,
            "token_id": str(self.token_id),
            "side": self.side,
            "maker_amount": str(self.maker_amount),
            "taker_amount": str(self.taker_amount),
        }


@dataclass(frozen=True)
class TransportError:
    """Subscription failed; the stream ends after this signal."""
    error: str


@dataclass(frozen=True)
class TransportClosed:
    """Subscription socket closed; the stream ends after this signal."""
    code: int
    reason: str


MonitorSignal = Union[TradeEvent, TransportError, TransportClosed]


@dataclass
class MonitorConfig:
    """Trade monitor configuration."""
    wss_url: str
    exchange_address: str
    ping_interval: float = 20.0


class TradeMonitor:
    """Streams maker-side settlements of one wallet from new blocks."""

    def __init__(
        self,
        config: MonitorConfig,
        rpc: PolygonRPC,
        connect: Callable = websockets.connect
    ):
        """
        Initialize trade monitor.

        Args:
            config: Monitor configuration
            rpc: Block and receipt reader
            connect: Websocket connect factory
        """
        self.config = config
        self.rpc = rpc
        self._connect = connect
        self._exchange = config.exchange_address.lower()
        self._seen: OrderedDict[str, None] = OrderedDict()

    async def subscribe(self, target_wallet: str) -> AsyncIterator[MonitorSignal]:
        """
        Stream signals for `target_wallet` until the transport ends.

        The last signal is always a TransportError or TransportClosed.
        """
        queue: asyncio.Queue = asyncio.Queue()
        block_tasks: set[asyncio.Task] = set()
        reader = asyncio.create_task(self._read_heads(target_wallet, queue, block_tasks))
        try:
            while True:
                signal = await queue.get()
                yield signal
                if isinstance(signal, (TransportError, TransportClosed)):
                    return
        finally:
            reader.cancel()
            for task in list(block_tasks):
                task.cancel()

    async def _read_heads(self, target_wallet: str, queue: asyncio.Queue, block_tasks: set):
        try:
            async with self._connect(self.config.wss_url, ping_interval=self.config.ping_interval) as ws:
                await ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "eth_subscribe",
                    "params": ["newHeads"],
                }))
                logger.info(f"🔍 Watching new blocks for trades by {target_wallet}")

                async for message in ws:
                    block_number = self._parse_head(message)
                    if block_number is None:
                        continue
                    task = asyncio.create_task(self._handle_block(block_number, target_wallet, queue))
                    block_tasks.add(task)
                    task.add_done_callback(block_tasks.discard)

                code = ws.close_code if ws.close_code is not None else 1000
                signal = TransportClosed(code=code, reason=ws.close_reason or "")
                logger.warning(f"WebSocket closed: Code {signal.code}, Reason: {signal.reason}")
        except websockets.ConnectionClosed as e:
            rcvd = e.rcvd
            signal = TransportClosed(
                code=rcvd.code if rcvd else ABNORMAL_CLOSURE,
                reason=rcvd.reason if rcvd else str(e)
            )
            logger.error(f"WebSocket closed: Code {signal.code}, Reason: {signal.reason}")
        except Exception as e:
            signal = TransportError(error=str(e) or type(e).__name__)
            logger.error(f"WebSocket error: {signal.error}")

        # Let blocks already being processed report before the stream ends
        if block_tasks:
            await asyncio.gather(*list(block_tasks), return_exceptions=True)
        await queue.put(signal)

    @staticmethod
    def _parse_head(message) -> Optional[int]:
        try:
            data = json.loads(message)
        except ValueError:
            logger.warning(f"Ignoring malformed subscription message: {message!r:.200}")
            return None
        if data.get("error"):
            raise SubscriptionError(data["error"])
        if data.get("method") != "eth_subscription":
            return None
        head = data.get("params", {}).get("result") or {}
        number = head.get("number")
        return int(number, 16) if number else None

    async def _handle_block(self, block_number: int, target_wallet: str, queue: asyncio.Queue):
        try:
            events = await self.process_block(block_number, target_wallet)
        except Exception as e:
            logger.error(f"Error processing block {block_number}: {e}", exc_info=True)
            return
        for event in events:
            if self._mark_seen(event.tx_hash):
                await queue.put(event)

    def _mark_seen(self, tx_hash: str) -> bool:
        """Record a transaction hash; False if it was already emitted."""
        key = tx_hash.lower()
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > SEEN_TX_LIMIT:
            self._seen.popitem(last=False)
        return True

    async def process_block(self, block_number: int, target_wallet: str) -> list[TradeEvent]:
        """Fetch one block and return the target wallet's confirmed maker trades."""
        block = await self.rpc.get_block_with_transactions(block_number)
        if not block:
            return []

        events = []
        for tx in block.get("transactions") or []:
            # Some nodes list bare hashes; only full objects carry calldata
            if not isinstance(tx, dict):
                continue
            event = await self.inspect_transaction(tx, block_number, target_wallet)
            if event:
                events.append(event)
        return events

    async def inspect_transaction(self, tx: dict, block_number: int, target_wallet: str) -> Optional[TradeEvent]:
        """Turn one transaction into a TradeEvent, or None when it does not qualify."""
        to = (tx.get("to") or "").lower()
        if to != self._exchange:
            return None

        calldata = tx.get("input") or tx.get("data") or ""
        if len(calldata) < MIN_CALLDATA_LENGTH:
            return None

        pair = decode_match_orders(calldata)
        if pair is None:
            return None

        order = pair.maker_order_for(target_wallet)
        if order is None:
            return None

        tx_hash = tx["hash"]
        receipt = await self.rpc.get_transaction_receipt(tx_hash)
        if not receipt_succeeded(receipt):
            return None

        event = TradeEvent(
            block_number=block_number,
            tx_hash=tx_hash,
            token_id=order.token_id,
            side=order.side,
            maker_amount=order.maker_amount,
            taker_amount=order.taker_amount,
        )
        logger.info(f"📊 Detected trade {tx_hash} in block {block_number}: {event.to_dict()}")
        return event
