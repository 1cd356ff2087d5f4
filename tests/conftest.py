"""Shared fixtures: wallets and CTF Exchange calldata builders."""

import pytest
from eth_abi import encode

from pm_mirror.services.order_decoder import MATCH_ORDERS_ARG_TYPES, MATCH_ORDERS_SELECTOR, ORDER_FIELDS

TARGET_WALLET = "0x1111111111111111111111111111111111111111"
OTHER_WALLET = "0x2222222222222222222222222222222222222222"
EXCHANGE_ADDRESS = "0x4bfb41d5b3570defd03c39a9a4d8de6bd8b8982e"
ZERO_ADDRESS = "0x" + "0" * 40


def order_values(
    maker: str = OTHER_WALLET,
    token_id: int = 7,
    maker_amount: int = 10_000_000,
    taker_amount: int = 5_000_000,
    side: int = 0
) -> tuple:
    fields = {
        "salt": 42,
        "maker": maker,
        "signer": maker,
        "taker": ZERO_ADDRESS,
        "token_id": token_id,
        "maker_amount": maker_amount,
        "taker_amount": taker_amount,
        "expiration": 0,
        "nonce": 0,
        "fee_rate_bps": 0,
        "side": side,
        "signature_type": 0,
        "signature": b"\x01" * 65,
    }
    return tuple(fields[name] for name, _ in ORDER_FIELDS)


def match_orders_calldata(taker: tuple, makers: list) -> str:
    body = encode(list(MATCH_ORDERS_ARG_TYPES), [taker, makers, 1_000_000, [1_000_000] * len(makers)])
    return "0x" + (MATCH_ORDERS_SELECTOR + body).hex()


@pytest.fixture
def make_order():
    return order_values


@pytest.fixture
def make_calldata():
    return match_orders_calldata
