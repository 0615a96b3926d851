"""Tests for loan position derivation and risk metrics."""

from decimal import Decimal

import pytest

from services.ledger.src.ledger.adapters.indexer import MockIndexerClient
from services.ledger.src.ledger.domain.events import (
    AddressHistory,
    BorrowEvent,
    DedupKey,
    LiquidationEvent,
    Protocol,
    RepayEvent,
    SupplyEvent,
    WithdrawEvent,
)
from services.ledger.src.ledger.domain.pricing import AssetRate, FixedRatePriceEstimator
from services.ledger.src.ledger.domain.risk import (
    NO_DEBT_HEALTH_FACTOR,
    HealthStatus,
    LoanSummary,
    RiskMetricCalculator,
    _allocate,
    compute_loan_summary,
    format_health_factor,
    health_factor,
    loan_to_value_bps,
)

X = "0x" + "11" * 20
Y = "0x" + "22" * 20
USDC = "0x" + "aa" * 20
DAI = "0x" + "dd" * 20
WETH = "0x" + "bb" * 20

_log_index = iter(range(1_000_000))


def _common(protocol: Protocol, asset: str, amount: int, block: int) -> dict:
    return dict(
        dedup_key=DedupKey(1, block, next(_log_index)),
        address=X,
        protocol=protocol,
        asset=asset,
        asset_address=asset,
        amount_raw=amount,
        amount_usd=amount,
        timestamp=1_700_000_000 + block,
        block_number=block,
        transaction_hash=f"0x{block:064x}",
    )


def borrow(protocol, amount, asset=USDC, block=100, **kwargs):
    return BorrowEvent(**_common(protocol, asset, amount, block), **kwargs)


def repay(protocol, amount, asset=USDC, block=200):
    return RepayEvent(**_common(protocol, asset, amount, block))


def supply(protocol, amount, asset=WETH, block=50):
    return SupplyEvent(**_common(protocol, asset, amount, block))


def withdraw(protocol, amount, asset=WETH, block=300):
    return WithdrawEvent(**_common(protocol, asset, amount, block))


def liquidation(protocol, collateral_usd, collateral_asset=WETH, block=400):
    return LiquidationEvent(
        **_common(protocol, USDC, 0, block),
        liquidator=Y,
        collateral_asset=collateral_asset,
        debt_asset=USDC,
        debt_to_cover=0,
        liquidated_collateral_amount=collateral_usd,
        liquidated_collateral_usd=collateral_usd,
    )


def summarize(*events, **kwargs) -> LoanSummary:
    return compute_loan_summary(X, AddressHistory.from_events(X, list(events)), **kwargs)


class TestRatios:

    def test_ltv_bps(self):
        assert loan_to_value_bps(5_000, 10_000) == 5_000

    def test_ltv_zero_without_collateral(self):
        assert loan_to_value_bps(5_000, 0) == 0

    def test_health_factor_none_without_debt(self):
        assert health_factor(0, 10_000) is None

    def test_health_factor_is_exact_decimal(self):
        assert health_factor(3, 1) == Decimal("0.333333333333333333")

    def test_format_health_factor(self):
        assert format_health_factor(None) == NO_DEBT_HEALTH_FACTOR
        assert format_health_factor(health_factor(4_000, 10_000)) == "2.5"
        assert format_health_factor(health_factor(1, 2)) == "2"

    def test_allocate_gives_remainder_to_largest_debtor(self):
        assert _allocate(10, [1, 2]) == [3, 7]

    def test_allocate_sums_to_pool(self):
        shares = _allocate(1_000_003, [7, 11, 13])

        assert sum(shares) == 1_000_003


class TestScenarios:

    def test_partial_repay_keeps_both_positions_active(self):
        summary = summarize(
            borrow(Protocol.AAVE_V3, 10_000),
            borrow(Protocol.SPARK, 25_000),
            repay(Protocol.AAVE_V3, 5_000),
        )

        assert summary.total_borrowed_usd == 35_000
        assert summary.active_loans == 2
        positions = {p.protocol: p for p in summary.loans}
        assert positions[Protocol.AAVE_V3].net_borrowed_usd == 5_000
        assert positions[Protocol.AAVE_V3].is_active
        assert positions[Protocol.SPARK].net_borrowed_usd == 25_000
        assert summary.outstanding_debt_usd == 30_000
        assert summary.total_repaid_usd == 5_000

    def test_unknown_address_is_all_zero(self):
        summary = summarize()

        assert summary.total_loans == 0
        assert summary.active_loans == 0
        assert summary.total_borrowed_usd == 0
        assert summary.health_factor is None
        assert summary.health_factor_display == NO_DEBT_HEALTH_FACTOR
        assert summary.health_status == HealthStatus.NO_DEBT


class TestNetDebt:

    def test_over_repayment_floors_at_zero(self):
        summary = summarize(
            borrow(Protocol.AAVE_V3, 1_000),
            repay(Protocol.AAVE_V3, 1_500),
        )

        position = summary.loans[0]
        assert position.net_borrowed_usd == 0
        assert not position.is_active
        assert summary.active_loans == 0
        assert summary.total_loans == 1
        assert summary.health_factor is None

    def test_repay_on_other_asset_does_not_reduce_debt(self):
        summary = summarize(
            borrow(Protocol.AAVE_V3, 1_000, asset=USDC),
            repay(Protocol.AAVE_V3, 1_000, asset=DAI),
        )

        assert summary.loans[0].net_borrowed_usd == 1_000

    def test_repay_on_other_protocol_does_not_reduce_debt(self):
        summary = summarize(
            borrow(Protocol.AAVE_V3, 1_000),
            repay(Protocol.SPARK, 1_000),
        )

        assert summary.outstanding_debt_usd == 1_000

    def test_big_integers_are_exact(self):
        amount = 2**60 + 1
        summary = summarize(
            borrow(Protocol.AAVE_V3, amount),
            repay(Protocol.AAVE_V3, 1),
        )

        assert summary.total_borrowed_usd == amount
        assert summary.outstanding_debt_usd == 2**60

    def test_position_tracks_opening_borrow(self):
        first = borrow(Protocol.AAVE_V3, 100, block=10, borrow_rate=5)
        second = borrow(Protocol.AAVE_V3, 100, block=20, borrow_rate=7)

        position = summarize(second, first).loans[0]

        assert position.opened_at == first.timestamp
        assert position.transaction_hash == first.transaction_hash
        assert position.last_activity_at == second.timestamp
        assert position.borrow_rate == 7


class TestCollateralAndHealth:

    def test_health_factor_and_ltv(self):
        summary = summarize(
            supply(Protocol.AAVE_V3, 20_000),
            borrow(Protocol.AAVE_V3, 10_000),
        )

        assert summary.total_collateral_usd == 20_000
        assert summary.loan_to_value_bps == 5_000
        assert summary.average_loan_to_value == Decimal("50.00")
        assert summary.health_factor == Decimal(2)
        assert summary.health_factor_display == "2"
        assert summary.health_status == HealthStatus.HEALTHY

    def test_withdraw_reduces_collateral(self):
        summary = summarize(
            supply(Protocol.AAVE_V3, 20_000),
            withdraw(Protocol.AAVE_V3, 12_000),
            borrow(Protocol.AAVE_V3, 10_000),
        )

        assert summary.total_collateral_usd == 8_000
        assert summary.health_factor == Decimal("0.8")
        assert summary.health_status == HealthStatus.AT_RISK

    def test_collateral_is_split_pro_rata_within_protocol(self):
        summary = summarize(
            supply(Protocol.AAVE_V3, 10_000),
            borrow(Protocol.AAVE_V3, 3_000, asset=USDC),
            borrow(Protocol.AAVE_V3, 1_000, asset=DAI),
        )

        shares = {p.asset_address: p.collateral_usd for p in summary.loans}
        assert shares == {USDC: 7_500, DAI: 2_500}

    def test_collateral_does_not_cross_protocols(self):
        summary = summarize(
            supply(Protocol.SPARK, 10_000),
            borrow(Protocol.AAVE_V3, 1_000),
        )

        assert summary.loans[0].collateral_usd == 0
        assert summary.health_factor == Decimal(0)

    def test_liquidation_reduces_collateral_and_counts(self):
        summary = summarize(
            supply(Protocol.AAVE_V3, 10_000),
            borrow(Protocol.AAVE_V3, 5_000),
            liquidation(Protocol.AAVE_V3, 4_000),
        )

        assert summary.total_collateral_usd == 6_000
        assert summary.total_liquidations == 1
        assert summary.loans[0].liquidation_count == 1
        assert len(summary.liquidations) == 1

    def test_estimator_reprices_from_raw_amounts(self):
        estimator = FixedRatePriceEstimator({USDC: AssetRate(2)})

        summary = summarize(borrow(Protocol.AAVE_V3, 100), estimator=estimator)

        assert summary.total_borrowed_usd == 200


class TestFullAbsorption:

    def events(self):
        return [
            supply(Protocol.AAVE_V3, 100),
            borrow(Protocol.AAVE_V3, 80),
            liquidation(Protocol.AAVE_V3, 100),
        ]

    def test_position_stays_active_by_default(self):
        summary = summarize(*self.events())

        assert summary.active_loans == 1
        assert summary.health_status == HealthStatus.AT_RISK

    def test_position_closes_when_enabled(self):
        summary = summarize(*self.events(), close_on_full_absorption=True)

        assert summary.active_loans == 0
        assert summary.loans[0].net_borrowed_usd == 80
        assert summary.health_factor is None

    def test_partial_absorption_keeps_position_open(self):
        events = self.events()[:2] + [liquidation(Protocol.AAVE_V3, 40)]

        summary = summarize(*events, close_on_full_absorption=True)

        assert summary.active_loans == 1


class TestProtocolFilter:

    def test_only_counts_requested_protocol(self):
        summary = summarize(
            borrow(Protocol.AAVE_V3, 10_000),
            borrow(Protocol.SPARK, 25_000),
            protocol=Protocol.SPARK,
        )

        assert summary.total_borrowed_usd == 25_000
        assert [p.protocol for p in summary.loans] == [Protocol.SPARK]


class TestRiskMetricCalculator:

    def test_reads_history_for_canonical_address(self):
        source = MockIndexerClient([borrow(Protocol.AAVE_V3, 10)])
        calculator = RiskMetricCalculator(source)

        summary = calculator.compute_for_address(f"  {X} ")

        assert summary.address == X
        assert summary.total_borrowed_usd == 10
        assert source.call_history == [X]

    def test_rejects_invalid_address(self):
        calculator = RiskMetricCalculator(MockIndexerClient())

        with pytest.raises(ValueError):
            calculator.compute_for_address("not-an-address")

    def test_propagates_source_errors(self):
        source = MockIndexerClient()
        source.fail_for(X, RuntimeError("down"))

        with pytest.raises(RuntimeError):
            RiskMetricCalculator(source).compute_for_address(X)
