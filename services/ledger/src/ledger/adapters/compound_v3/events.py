"""Compound V3 (Comet) events -> canonical events.

Comet event arguments:
    Supply(from, dst, amount)                         base asset
    Withdraw(src, to, amount)                         base asset
    SupplyCollateral(from, dst, asset, amount)
    WithdrawCollateral(src, to, asset, amount)
    AbsorbCollateral(absorber, borrower, asset, collateralAbsorbed, usdValue)

AbsorbDebt and BuyCollateral carry no per-account state we track and are ignored.
"""

from typing import Any

from services.ledger.src.ledger.adapters.common import (
    Handler,
    LogContext,
    ProtocolAdapter,
    _get_address,
    _get_amount,
)
from services.ledger.src.ledger.domain.events import (
    LiquidationEvent,
    Protocol,
    SupplyEvent,
    WithdrawEvent,
    canonicalize_address,
)
from services.ledger.src.ledger.domain.pricing import PriceEstimator

USDC_MAINNET = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


class CompoundV3Adapter(ProtocolAdapter):
    protocol = Protocol.COMPOUND_V3

    def __init__(
        self,
        estimator: PriceEstimator | None = None,
        base_asset_symbol: str = "USDC",
        base_asset_address: str = USDC_MAINNET,
    ):
        super().__init__(estimator)
        self.base_asset_symbol = base_asset_symbol
        self.base_asset_address = canonicalize_address(base_asset_address)

    def handlers(self) -> dict[str, Handler]:
        return {
            "Supply": self.transform_supply,
            "Withdraw": self.transform_withdraw,
            "SupplyCollateral": self.transform_supply_collateral,
            "WithdrawCollateral": self.transform_withdraw_collateral,
            "AbsorbCollateral": self.transform_absorb_collateral,
        }

    def _base_fields(self, amount: int) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "asset": self.base_asset_symbol,
            "asset_address": self.base_asset_address,
            "amount_raw": amount,
            "amount_usd": self.estimate(self.base_asset_address, amount),
        }

    def _collateral_fields(self, params: dict[str, Any], amount: int) -> dict[str, Any]:
        asset = _get_address(params, "asset")
        return {
            "protocol": self.protocol,
            "asset": asset,
            "asset_address": asset,
            "amount_raw": amount,
            "amount_usd": self.estimate(asset, amount),
        }

    def transform_supply(self, params: dict[str, Any], context: LogContext) -> SupplyEvent:
        dst = _get_address(params, "dst")
        return SupplyEvent(
            address=dst,
            sender=self.sender_if_delegated(_get_address(params, "from", required=False), dst),
            **self._base_fields(_get_amount(params, "amount")),
            **context.common(),
        )

    def transform_withdraw(self, params: dict[str, Any], context: LogContext) -> WithdrawEvent:
        src = _get_address(params, "src")
        return WithdrawEvent(
            address=src,
            **self._base_fields(_get_amount(params, "amount")),
            **context.common(),
        )

    def transform_supply_collateral(
        self, params: dict[str, Any], context: LogContext
    ) -> SupplyEvent:
        dst = _get_address(params, "dst")
        return SupplyEvent(
            address=dst,
            sender=self.sender_if_delegated(_get_address(params, "from", required=False), dst),
            **self._collateral_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_withdraw_collateral(
        self, params: dict[str, Any], context: LogContext
    ) -> WithdrawEvent:
        src = _get_address(params, "src")
        return WithdrawEvent(
            address=src,
            **self._collateral_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_absorb_collateral(
        self, params: dict[str, Any], context: LogContext
    ) -> LiquidationEvent:
        borrower = _get_address(params, "borrower")
        collateral_asset = _get_address(params, "asset")
        absorbed = _get_amount(params, "collateralAbsorbed")
        # Comet absorbs the whole debt; there is no per-call debt amount on this log
        return LiquidationEvent(
            address=borrower,
            protocol=self.protocol,
            asset=self.base_asset_symbol,
            asset_address=self.base_asset_address,
            amount_raw=0,
            amount_usd=0,
            liquidator=_get_address(params, "absorber"),
            collateral_asset=collateral_asset,
            debt_asset=self.base_asset_address,
            debt_to_cover=0,
            liquidated_collateral_amount=absorbed,
            liquidated_collateral_usd=self.estimate(collateral_asset, absorbed),
            **context.common(),
        )
