"""Tests for Position Scaler."""

from decimal import Decimal

import pytest

from pm_mirror.config.config import CopyParameters
from pm_mirror.services.order_decoder import OrderSide
from pm_mirror.services.position_scaler import ExecutionRequest, Skip, translate
from pm_mirror.services.trade_monitor import TradeEvent


def make_event(maker_amount, taker_amount, side=0, token_id=123456):
    return TradeEvent(
        block_number=1,
        tx_hash="0xabc",
        token_id=token_id,
        side=side,
        maker_amount=maker_amount,
        taker_amount=taker_amount
    )


def make_params(copy_ratio="1"):
    return CopyParameters(
        copy_ratio=Decimal(copy_ratio),
        retry_limit=3,
        order_timeout_seconds=5,
        price_increment_percent=Decimal("1")
    )


class TestTranslate:
    """Test cases for translate."""

    def test_proportional_size_above_floor(self):
        """10 USDC for 5 shares at ratio 1 copies 5.01 at 0.5."""
        result = translate(make_event(10_000_000, 5_000_000), make_params("1"))

        assert isinstance(result, ExecutionRequest)
        assert result.price == Decimal("0.5")
        assert result.size == Decimal("5.01")
        assert result.side is OrderSide.BUY
        assert result.token_id == "123456"

    def test_small_ratio_is_floored_to_minimum_size(self):
        """A tiny proportional size is raised to 5 shares."""
        result = translate(make_event(2_000_000, 1_000_000), make_params("0.01"))

        assert result.price == Decimal("0.5")
        assert result.size == Decimal("5")
        assert result.notional == Decimal("2.5")

    def test_low_price_is_raised_to_minimum_notional(self):
        """At 0.1 a 5-share floor is under 1 USDC, so size becomes 1/0.1 + 0.01."""
        result = translate(make_event(10_000_000, 1_000_000), make_params("1"))

        assert result.price == Decimal("0.1")
        assert result.size == Decimal("10.01")
        assert result.notional >= Decimal("1")

    def test_token_id_keeps_full_precision(self):
        token_id = 2 ** 255 + 7
        result = translate(make_event(10_000_000, 5_000_000, token_id=token_id), make_params())

        assert result.token_id == str(token_id)

    @pytest.mark.parametrize("maker_amount,taker_amount,ratio", [
        (1_000_000_000, 1_000, "1"),
        (3_000_000, 1_000_000, "0.5"),
        (999_999, 999_998, "2"),
        (7_000_000, 3_000_000, "0.001"),
        (50_000_000, 1, "1"),
    ])
    def test_size_and_notional_minimums_hold(self, maker_amount, taker_amount, ratio):
        """Every produced order has at least 5 shares and at least 1 USDC notional."""
        result = translate(make_event(maker_amount, taker_amount), make_params(ratio))

        assert isinstance(result, ExecutionRequest)
        assert result.size >= Decimal("5")
        assert result.price * result.size >= Decimal("1")

    def test_sell_trades_are_skipped(self):
        result = translate(make_event(10_000_000, 5_000_000, side=1), make_params())

        assert isinstance(result, Skip)
        assert "SELL" in result.reason

    def test_unknown_side_is_skipped(self):
        result = translate(make_event(10_000_000, 5_000_000, side=7), make_params())

        assert isinstance(result, Skip)
        assert "7" in result.reason

    @pytest.mark.parametrize("maker_amount,taker_amount", [(0, 5_000_000), (10_000_000, 0), (0, 0)])
    def test_zero_amounts_are_skipped(self, maker_amount, taker_amount):
        """No division by zero and no order for an empty fill."""
        result = translate(make_event(maker_amount, taker_amount), make_params())

        assert isinstance(result, Skip)
        assert "zero" in result.reason


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
