"""Tests for the Compound V3 (Comet) adapter."""

import pytest

from services.ledger.src.ledger.adapters.common import TransformationError
from services.ledger.src.ledger.adapters.compound_v3 import CompoundV3Adapter
from services.ledger.src.ledger.domain.events import (
    EventKind,
    LiquidationEvent,
    Protocol,
    SupplyEvent,
    WithdrawEvent,
)
from services.ledger.src.ledger.domain.pricing import AssetRate, FixedRatePriceEstimator

USER = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
ABSORBER = "0x" + "33" * 20
BASE = "0x" + "aa" * 20
WETH = "0x" + "bb" * 20


def make_raw(event_name: str, params: dict, block: int = 200, log_index: int = 3) -> dict:
    return {
        "chain_id": 1,
        "block_number": block,
        "log_index": log_index,
        "block_timestamp": 1_700_000_100,
        "transaction_hash": "0x" + "cd" * 32,
        "event_name": event_name,
        "params": params,
    }


@pytest.fixture
def adapter():
    return CompoundV3Adapter(base_asset_symbol="USDC", base_asset_address=BASE)


class TestCompoundBaseAsset:

    def test_supply_attributes_to_dst(self, adapter):
        raw = make_raw("Supply", {"from": OTHER, "dst": USER, "amount": "700"})

        event = adapter.transform(raw)

        assert isinstance(event, SupplyEvent)
        assert event.protocol == Protocol.COMPOUND_V3
        assert event.address == USER
        assert event.sender == OTHER
        assert event.asset == "USDC"
        assert event.asset_address == BASE
        assert event.amount_raw == 700

    def test_withdraw_attributes_to_src(self, adapter):
        raw = make_raw("Withdraw", {"src": USER, "to": OTHER, "amount": "50"})

        event = adapter.transform(raw)

        assert isinstance(event, WithdrawEvent)
        assert event.address == USER
        assert event.asset_address == BASE


class TestCompoundCollateral:

    def test_supply_collateral_uses_asset(self, adapter):
        raw = make_raw("SupplyCollateral", {
            "from": USER, "dst": USER, "asset": WETH, "amount": "10",
        })

        event = adapter.transform(raw)

        assert event.kind == EventKind.SUPPLY
        assert event.asset_address == WETH
        assert event.sender is None

    def test_withdraw_collateral_attributes_to_src(self, adapter):
        raw = make_raw("WithdrawCollateral", {
            "src": USER, "to": OTHER, "asset": WETH, "amount": "4",
        })

        event = adapter.transform(raw)

        assert event.kind == EventKind.WITHDRAW
        assert event.address == USER
        assert event.asset_address == WETH

    def test_supply_collateral_requires_asset(self, adapter):
        raw = make_raw("SupplyCollateral", {"from": USER, "dst": USER, "amount": "10"})

        with pytest.raises(TransformationError) as exc_info:
            adapter.transform(raw)

        assert exc_info.value.field == "asset"


class TestCompoundAbsorb:

    def test_absorb_collateral_is_liquidation_of_borrower(self, adapter):
        raw = make_raw("AbsorbCollateral", {
            "absorber": ABSORBER,
            "borrower": USER,
            "asset": WETH,
            "collateralAbsorbed": "5",
            "usdValue": "1000000",
        })

        event = adapter.transform(raw)

        assert isinstance(event, LiquidationEvent)
        assert event.address == USER
        assert event.liquidator == ABSORBER
        assert event.collateral_asset == WETH
        assert event.debt_asset == BASE
        assert event.debt_to_cover == 0
        assert event.liquidated_collateral_amount == 5

    def test_prices_absorbed_collateral_with_estimator(self):
        estimator = FixedRatePriceEstimator({WETH: AssetRate(2000)})
        adapter = CompoundV3Adapter(estimator, base_asset_address=BASE)
        raw = make_raw("AbsorbCollateral", {
            "absorber": ABSORBER, "borrower": USER, "asset": WETH,
            "collateralAbsorbed": "3", "usdValue": "1",
        })

        event = adapter.transform(raw)

        assert event.liquidated_collateral_usd == 6000

    @pytest.mark.parametrize("event_name", ["AbsorbDebt", "BuyCollateral", "Transfer"])
    def test_ignores_untracked_events(self, adapter, event_name):
        assert adapter.transform(make_raw(event_name, {})) is None

    def test_rejects_invalid_base_asset_address(self):
        with pytest.raises(ValueError):
            CompoundV3Adapter(base_asset_address="usdc")
