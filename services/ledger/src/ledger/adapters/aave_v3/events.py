"""Aave V3 Pool events -> canonical events.

Pool event arguments (as decoded by the indexer):
    Supply(reserve, user, onBehalfOf, amount, referralCode)
    Withdraw(reserve, user, to, amount)
    Borrow(reserve, user, onBehalfOf, amount, interestRateMode, borrowRate, referralCode)
    Repay(reserve, user, repayer, amount, useATokens)
    LiquidationCall(collateralAsset, debtAsset, user, debtToCover,
                    liquidatedCollateralAmount, liquidator, receiveAToken)

``user`` on Supply/Borrow is the caller; the position belongs to ``onBehalfOf``.
"""

from typing import Any

from services.ledger.src.ledger.adapters.common import (
    Handler,
    LogContext,
    ProtocolAdapter,
    TransformationError,
    _get_address,
    _get_amount,
    _get_field,
    _to_int,
)
from services.ledger.src.ledger.domain.events import (
    BorrowEvent,
    LiquidationEvent,
    Protocol,
    RepayEvent,
    SupplyEvent,
    WithdrawEvent,
)


class AavePoolAdapter(ProtocolAdapter):
    """Adapter for Aave V3 style pools. Spark re-uses it with its own protocol tag."""

    protocol = Protocol.AAVE_V3

    def handlers(self) -> dict[str, Handler]:
        return {
            "Supply": self.transform_supply,
            "Withdraw": self.transform_withdraw,
            "Borrow": self.transform_borrow,
            "Repay": self.transform_repay,
            "LiquidationCall": self.transform_liquidation,
        }

    def _asset_fields(self, params: dict[str, Any], amount: int) -> dict[str, Any]:
        reserve = _get_address(params, "reserve")
        return {
            "protocol": self.protocol,
            "asset": reserve,
            "asset_address": reserve,
            "amount_raw": amount,
            "amount_usd": self.estimate(reserve, amount),
        }

    def transform_supply(self, params: dict[str, Any], context: LogContext) -> SupplyEvent:
        beneficiary = _get_address(params, "onBehalfOf")
        caller = _get_address(params, "user", required=False)
        return SupplyEvent(
            address=beneficiary,
            sender=self.sender_if_delegated(caller, beneficiary),
            **self._asset_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_withdraw(self, params: dict[str, Any], context: LogContext) -> WithdrawEvent:
        owner = _get_address(params, "user")
        return WithdrawEvent(
            address=owner,
            **self._asset_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_borrow(self, params: dict[str, Any], context: LogContext) -> BorrowEvent:
        beneficiary = _get_address(params, "onBehalfOf")
        caller = _get_address(params, "user", required=False)
        raw_rate = _get_field(params, "borrowRate", required=False)
        borrow_rate = _to_int(raw_rate, "borrowRate") if raw_rate is not None else None
        if borrow_rate is not None and borrow_rate < 0:
            raise TransformationError("borrowRate", "negative rate")
        return BorrowEvent(
            address=beneficiary,
            sender=self.sender_if_delegated(caller, beneficiary),
            borrow_rate=borrow_rate,
            **self._asset_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_repay(self, params: dict[str, Any], context: LogContext) -> RepayEvent:
        # user is whose debt is repaid, repayer paid for it
        beneficiary = _get_address(params, "user")
        repayer = _get_address(params, "repayer", required=False)
        return RepayEvent(
            address=beneficiary,
            sender=self.sender_if_delegated(repayer, beneficiary),
            **self._asset_fields(params, _get_amount(params, "amount")),
            **context.common(),
        )

    def transform_liquidation(
        self, params: dict[str, Any], context: LogContext
    ) -> LiquidationEvent:
        borrower = _get_address(params, "user")
        collateral_asset = _get_address(params, "collateralAsset")
        debt_asset = _get_address(params, "debtAsset")
        debt_to_cover = _get_amount(params, "debtToCover")
        collateral_amount = _get_amount(params, "liquidatedCollateralAmount")
        return LiquidationEvent(
            address=borrower,
            protocol=self.protocol,
            asset=debt_asset,
            asset_address=debt_asset,
            amount_raw=debt_to_cover,
            amount_usd=self.estimate(debt_asset, debt_to_cover),
            liquidator=_get_address(params, "liquidator"),
            collateral_asset=collateral_asset,
            debt_asset=debt_asset,
            debt_to_cover=debt_to_cover,
            liquidated_collateral_amount=collateral_amount,
            liquidated_collateral_usd=self.estimate(collateral_asset, collateral_amount),
            **context.common(),
        )


class AaveV3Adapter(AavePoolAdapter):
    protocol = Protocol.AAVE_V3
