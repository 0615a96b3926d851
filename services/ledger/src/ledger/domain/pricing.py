"""USD estimation for raw token amounts.

Adapters and the risk calculator only see the ``PriceEstimator`` protocol so a
real oracle can replace the identity mapping without touching either of them.
"""

from dataclasses import dataclass, field
from typing import Protocol


class PriceEstimator(Protocol):
    def price(self, asset: str, amount: int) -> int:
        """Return the USD-cent-equivalent value of ``amount`` smallest units of ``asset``."""
        ...


class IdentityPriceEstimator:
    """1 raw unit = 1 USD-cent-equivalent.

    Known to be inaccurate for anything that is not a 2-decimal stablecoin.
    """

    def price(self, asset: str, amount: int) -> int:
        return amount


@dataclass(frozen=True)
class AssetRate:
    # usd = amount * multiplier // divisor
    multiplier: int
    divisor: int = 1


@dataclass
class FixedRatePriceEstimator:
    """Static per-asset integer conversion table, falling back to identity.

    Useful for assets whose decimals differ from the USD-cent scale, e.g.
    USDC (6 decimals) -> cents is ``AssetRate(1, 10**4)``.
    """

    rates: dict[str, AssetRate] = field(default_factory=dict)

    def price(self, asset: str, amount: int) -> int:
        rate = self.rates.get(asset.lower())
        if rate is None:
            return amount
        return amount * rate.multiplier // rate.divisor


DEFAULT_ESTIMATOR = IdentityPriceEstimator()
