"""
Position Scaler - turns a detected trade into a mirror order.

Only buy-side trades are mirrored; sell-side trades are skipped.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from pm_mirror.config.config import CopyParameters
from pm_mirror.services.order_decoder import OrderSide
from pm_mirror.services.trade_monitor import TradeEvent

BASE_UNIT_DIVISOR = Decimal(1_000_000)
MIN_ORDER_SIZE = Decimal(5)
MIN_NOTIONAL = Decimal(1)
SIZE_OFFSET = Decimal("0.01")

MIRRORED_SIDES = frozenset({OrderSide.BUY})


@dataclass(frozen=True)
class ExecutionRequest:
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal

    @property
    def notional(self) -> Decimal:
        return self.price * self.size


@dataclass(frozen=True)
class Skip:
    reason: str


def translate(event: TradeEvent, params: CopyParameters) -> Union[ExecutionRequest, Skip]:
    """Size a mirror order for `event`, or explain why it is skipped."""
    try:
        side = OrderSide(event.side)
    except ValueError:
        return Skip(f"unknown side flag {event.side}")
    if side not in MIRRORED_SIDES:
        return Skip(f"{side.name} trades are not mirrored")
    if event.maker_amount == 0 or event.taker_amount == 0:
        return Skip("trade has a zero amount")

    maker_amount = Decimal(event.maker_amount)
    taker_amount = Decimal(event.taker_amount)

    price = taker_amount / maker_amount
    size = taker_amount / BASE_UNIT_DIVISOR * params.copy_ratio + SIZE_OFFSET

    # Floor first, then the minimum notional
    if size < MIN_ORDER_SIZE:
        size = MIN_ORDER_SIZE
    if size * price < MIN_NOTIONAL:
        size = MIN_NOTIONAL / price + SIZE_OFFSET

    return ExecutionRequest(token_id=str(event.token_id), side=side, price=price, size=size)
