"""
Tests for the platform fee computation

Tests cover:
- Truncating basis-point arithmetic
- Zero and full fees
- Totals large enough to overflow a 64-bit product
"""

import pytest
from algopy import UInt64
from algopy_testing import AlgopyTestContext, algopy_testing_context

from contracts.crowdfund.contract import compute_fee


MAX_UINT64 = 2**64 - 1


class TestComputeFee:
    """Test suite for compute_fee."""

    @pytest.fixture
    def context(self) -> AlgopyTestContext:
        with algopy_testing_context() as ctx:
            yield ctx

    @pytest.mark.parametrize(
        "total, fee_bps, expected",
        [
            (1_000_003, 333, 33_300),
            (1_000_000, 250, 25_000),
            (9_999, 1, 0),
            (10_000, 1, 1),
            (19_999, 1, 1),
            (1_000_000, 0, 0),
            (1_000_000, 10_000, 1_000_000),
            (0, 500, 0),
        ],
    )
    def test_fee_rounds_down(
        self, context: AlgopyTestContext, total, fee_bps, expected
    ):
        """Test fee == floor(total * fee_bps / 10000)."""
        fee = compute_fee(UInt64(total), UInt64(fee_bps))

        assert fee == expected
        assert fee == total * fee_bps // 10_000

    @pytest.mark.parametrize(
        "fee_bps, expected",
        [
            (10_000, MAX_UINT64),
            (5_000, MAX_UINT64 // 2),
            (1, MAX_UINT64 // 10_000),
            (9_999, MAX_UINT64 * 9_999 // 10_000),
        ],
    )
    def test_large_totals_do_not_overflow(
        self, context: AlgopyTestContext, fee_bps, expected
    ):
        """Test totals near the uint64 limit use a wide intermediate product."""
        fee = compute_fee(UInt64(MAX_UINT64), UInt64(fee_bps))

        assert fee == expected

    def test_creator_keeps_rounding_remainder(self, context: AlgopyTestContext):
        """Test fee plus creator payout always equals the total."""
        total = 1_000_003
        fee = compute_fee(UInt64(total), UInt64(333))

        creator_payout = UInt64(total) - fee

        assert creator_payout == 966_703
        assert creator_payout + fee == total
