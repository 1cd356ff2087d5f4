"""
Mirror order executor for Polymarket CLOB

Runs the place -> poll -> cancel -> retry cycle for one translated trade.
Each attempt is resolved (filled, canceled or never placed) before the next
one starts, so a trade has at most one live order at any time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from py_clob_client.exceptions import PolyApiException

from pm_mirror.config.config import CopyParameters
from pm_mirror.services.clob_client import ClobSessionClient, SessionBootstrapError
from pm_mirror.services.position_scaler import ExecutionRequest

logger = logging.getLogger(__name__)

CHALLENGE_MARKERS = (
    "cloudflare",
    "attention required",
    "sorry, you have been blocked",
    "<!doctype html>",
)

MAX_RETRY_DELAY_MS = 10_000


class ExecutionStatus(Enum):
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"


class AttemptOutcome(Enum):
    FILLED = "FILLED"
    PARTIAL = "PARTIAL"
    SOFT_FAILURE = "SOFT_FAILURE"
    # Order may still be live on the book; no further attempts
    UNRESOLVED = "UNRESOLVED"


class ProviderBlockError(Exception):
    """The exchange edge answered with an anti-automation challenge page."""


@dataclass
class PlacedOrder:
    order_id: str
    status: str
    original_size: Decimal
    size_matched: Decimal

    @classmethod
    def from_response(cls, order_id: str, data: Optional[dict]) -> "PlacedOrder":
        data = data or {}
        return cls(
            order_id=order_id,
            status=str(data.get("status", "")),
            original_size=_to_decimal(data.get("original_size")),
            size_matched=_to_decimal(data.get("size_matched"))
        )

    @property
    def is_filled(self) -> bool:
        return self.original_size > 0 and self.size_matched >= self.original_size


@dataclass
class ExecutionResult:
    status: ExecutionStatus
    attempts: int
    price: Decimal
    size: Decimal
    order_id: Optional[str]
    timestamp: datetime

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value is not None else Decimal(0)
    except InvalidOperation:
        return Decimal(0)


def looks_like_challenge(response: Any) -> bool:
    """True when a response resembles an anti-bot challenge instead of JSON."""
    if response is None:
        return False
    if isinstance(response, (bytes, bytearray)):
        response = response.decode("utf-8", errors="replace")
    if isinstance(response, str):
        text = response.lower()
        return text.lstrip().startswith("<") or any(m in text for m in CHALLENGE_MARKERS)
    if isinstance(response, dict):
        for key in ("error", "errorMsg"):
            value = response.get(key)
            if isinstance(value, str) and any(m in value.lower() for m in CHALLENGE_MARKERS):
                return True
    return False


def retry_delay_ms(attempt: int) -> int:
    """Linear backoff before `attempt`, capped at 10s. Attempt 1 has none."""
    if attempt <= 1:
        return 0
    return min(1000 * attempt, MAX_RETRY_DELAY_MS)


class TradeExecutor:
    """Executes mirror orders through the shared CLOB session."""

    def __init__(
        self,
        session: ClobSessionClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        call_timeout_seconds: float = 30.0
    ):
        self.session = session
        self._sleep = sleep
        self._clock = clock
        self.call_timeout_seconds = call_timeout_seconds
        self._last_nonce = 0

    def next_nonce(self) -> int:
        """Millisecond timestamp, bumped so it always increases."""
        nonce = max(int(self._clock() * 1000), self._last_nonce + 1)
        self._last_nonce = nonce
        return nonce

    async def execute(self, request: ExecutionRequest, params: CopyParameters) -> ExecutionResult:
        """
        Place the mirror order, retrying with a raised price until filled.

        Never raises; the outcome is logged and returned.
        """
        logger.info(
            f"New trade executing: side={request.side.name} token={request.token_id} "
            f"price={request.price} size={request.size}"
        )
        price = request.price
        size = request.size
        last_price = price
        order_id = None
        attempt = 0

        while attempt < params.retry_limit:
            attempt += 1
            logger.info(f"✅ Attempt {attempt} of {params.retry_limit} for price: {price}, size: {size}")

            delay_ms = retry_delay_ms(attempt)
            if delay_ms:
                logger.info(f"⏳ Waiting {delay_ms / 1000}s before retry to avoid rate limits...")
                await self._sleep(delay_ms / 1000)

            last_price = price
            outcome, attempt_order_id = await self._attempt(request, price, size, params.order_timeout_seconds)
            order_id = attempt_order_id or order_id
            if outcome is AttemptOutcome.FILLED:
                return self._finish(ExecutionStatus.SUCCESS, attempt, price, size, order_id)
            if outcome is AttemptOutcome.UNRESOLVED:
                logger.error(f"Order {order_id} could not be canceled and may still be live, not retrying")
                break

            price = price + params.price_increment_percent / 100
            if price < 0:
                logger.info(f"Adjusted price {price} is negative, giving up")
                break

        logger.info(f"🔥 All {attempt} attempts failed.")
        return self._finish(ExecutionStatus.EXHAUSTED, attempt, last_price, size, order_id)

    def _finish(self, status, attempts, price, size, order_id) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            attempts=attempts,
            price=price,
            size=size,
            order_id=order_id,
            timestamp=datetime.now()
        )

    async def _attempt(
        self,
        request: ExecutionRequest,
        price: Decimal,
        size: Decimal,
        timeout: float
    ) -> tuple[AttemptOutcome, Optional[str]]:
        try:
            response = await self._place(request, price, size)
        except ProviderBlockError as e:
            self._log_block_guidance(e)
            return AttemptOutcome.SOFT_FAILURE, None
        except (PolyApiException, SessionBootstrapError) as e:
            logger.error(f"Order posting failed: {e}")
            return AttemptOutcome.SOFT_FAILURE, None
        except Exception as e:
            logger.error(f"Error during order execution ❗: {e}", exc_info=True)
            return AttemptOutcome.SOFT_FAILURE, None

        if not response or not response.get("success"):
            logger.error(f"Order posting failed. Response: {response}")
            return AttemptOutcome.SOFT_FAILURE, None

        order_id = response.get("orderID")
        if not order_id:
            logger.error(f"Order accepted without an id. Response: {response}")
            return AttemptOutcome.SOFT_FAILURE, None

        try:
            await self._sleep(timeout)
            order = PlacedOrder.from_response(order_id, await self._bounded(self.session.get_order(order_id)))
        except Exception as e:
            logger.error(f"Error while tracking order {order_id} ❗: {e}")
            if not await self._cancel(order_id):
                return AttemptOutcome.UNRESOLVED, order_id
            return AttemptOutcome.SOFT_FAILURE, order_id

        if order.is_filled:
            logger.info(f"Order completed successfully 🎉: {order_id}")
            return AttemptOutcome.FILLED, order_id

        await self._sleep(timeout)
        if not await self._cancel(order_id):
            return AttemptOutcome.UNRESOLVED, order_id
        logger.info(
            f"Order partially filled and canceled ❌: {order_id} "
            f"({order.size_matched}/{order.original_size})"
        )
        return AttemptOutcome.PARTIAL, order_id

    async def _place(self, request: ExecutionRequest, price: Decimal, size: Decimal) -> Optional[dict]:
        # Not bounded: abandoning the await would leave the post running in its worker thread
        try:
            response = await self.session.place_order(
                request.token_id,
                price,
                request.side,
                size,
                0,
                self.next_nonce()
            )
        except PolyApiException as e:
            if looks_like_challenge(e.error_msg):
                raise ProviderBlockError(str(e.error_msg)[:200]) from e
            raise
        logger.info(f"Order response: {response}")

        if looks_like_challenge(response):
            raise ProviderBlockError(str(response)[:200])
        if response is not None and not isinstance(response, dict):
            logger.error(f"Unexpected order response type {type(response).__name__}")
            return None
        return response

    async def _bounded(self, call: Awaitable) -> Any:
        """Time-limit a read-only call."""
        return await asyncio.wait_for(call, timeout=self.call_timeout_seconds)

    async def _cancel(self, order_id: str) -> bool:
        """Cancel a possibly-live order; False when it may still be on the book."""
        try:
            await self.session.cancel_order(order_id)
            return True
        except Exception as e:
            logger.error(f"Could not cancel order {order_id}: {e}")
            return False

    @staticmethod
    def _log_block_guidance(error: ProviderBlockError):
        logger.error(f"❌ Cloudflare blocked the request ({error}). This may be temporary. Consider:")
        logger.error("   1. Adding delays between requests")
        logger.error("   2. Using a different IP/proxy")
        logger.error("   3. Checking if your IP is whitelisted")
