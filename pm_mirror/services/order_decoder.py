"""
Polymarket CTF Exchange calldata decoder.

Decodes `matchOrders` calls into typed order records. Anything that is not a
well-formed `matchOrders` call decodes to None.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, function_signature_to_4byte_selector


class OrderSide(IntEnum):
    """Order side as encoded on-chain."""
    BUY = 0
    SELL = 1


# Field order matches the on-chain Order struct
ORDER_FIELDS: tuple[tuple[str, str], ...] = (
    ("salt", "uint256"),
    ("maker", "address"),
    ("signer", "address"),
    ("taker", "address"),
    ("token_id", "uint256"),
    ("maker_amount", "uint256"),
    ("taker_amount", "uint256"),
    ("expiration", "uint256"),
    ("nonce", "uint256"),
    ("fee_rate_bps", "uint256"),
    ("side", "uint8"),
    ("signature_type", "uint8"),
    ("signature", "bytes"),
)

ORDER_TUPLE = "(" + ",".join(abi_type for _, abi_type in ORDER_FIELDS) + ")"

MATCH_ORDERS_ARG_TYPES = (ORDER_TUPLE, f"{ORDER_TUPLE}[]", "uint256", "uint256[]")
MATCH_ORDERS_SIGNATURE = f"matchOrders({','.join(MATCH_ORDERS_ARG_TYPES)})"
MATCH_ORDERS_SELECTOR: bytes = function_signature_to_4byte_selector(MATCH_ORDERS_SIGNATURE)


@dataclass(frozen=True)
class Order:
    """A signed CTF Exchange order. Amounts are base units (6 decimals)."""
    salt: int
    maker: str
    signer: str
    taker: str
    token_id: int
    maker_amount: int
    taker_amount: int
    expiration: int
    nonce: int
    fee_rate_bps: int
    side: int
    signature_type: int
    signature: bytes

    @classmethod
    def from_abi(cls, values: tuple) -> "Order":
        return cls(**{name: value for (name, _), value in zip(ORDER_FIELDS, values)})

    def is_made_by(self, wallet: str) -> bool:
        return self.maker.lower() == wallet.lower()


@dataclass(frozen=True)
class OrderPair:
    """Decoded `matchOrders` arguments."""
    taker_order: Order
    maker_orders: tuple[Order, ...]
    taker_fill_amount: int
    maker_fill_amounts: tuple[int, ...]

    def maker_order_for(self, wallet: str) -> Optional[Order]:
        """First maker order placed by `wallet`, compared case-insensitively."""
        for order in self.maker_orders:
            if order.is_made_by(wallet):
                return order
        return None


def decode_match_orders(calldata: Union[str, bytes]) -> Optional[OrderPair]:
    """
    Decode `matchOrders` calldata.

    Args:
        calldata: Transaction input, hex string or raw bytes

    Returns:
        OrderPair, or None when the calldata is not a `matchOrders` call
    """
    try:
        raw = decode_hex(calldata) if isinstance(calldata, str) else bytes(calldata)
    except ValueError:
        return None

    if raw[:4] != MATCH_ORDERS_SELECTOR:
        return None

    try:
        taker, makers, taker_fill, maker_fills = decode(MATCH_ORDERS_ARG_TYPES, raw[4:])
    except (DecodingError, ValueError, OverflowError):
        return None

    return OrderPair(
        taker_order=Order.from_abi(taker),
        maker_orders=tuple(Order.from_abi(m) for m in makers),
        taker_fill_amount=taker_fill,
        maker_fill_amounts=tuple(maker_fills),
    )
