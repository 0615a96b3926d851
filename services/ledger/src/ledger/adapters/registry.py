from services.ledger.src.ledger.adapters.aave_v3 import AaveV3Adapter
from services.ledger.src.ledger.adapters.common import ProtocolAdapter
from services.ledger.src.ledger.adapters.compound_v3 import CompoundV3Adapter
from services.ledger.src.ledger.adapters.spark import SparkAdapter
from services.ledger.src.ledger.config import Settings
from services.ledger.src.ledger.domain.events import Protocol
from services.ledger.src.ledger.domain.pricing import PriceEstimator

# Indexer contract names for each protocol's event stream
CONTRACT_PROTOCOLS = {
    "AaveV3Pool": Protocol.AAVE_V3,
    "SparkPool": Protocol.SPARK,
    "CompoundV3Comet": Protocol.COMPOUND_V3,
}

PROTOCOL_CONTRACTS = {protocol: name for name, protocol in CONTRACT_PROTOCOLS.items()}


def get_adapter(
    protocol: Protocol,
    estimator: PriceEstimator | None = None,
    settings: Settings | None = None,
) -> ProtocolAdapter:
    if protocol == Protocol.AAVE_V3:
        return AaveV3Adapter(estimator)
    if protocol == Protocol.SPARK:
        return SparkAdapter(estimator)
    if protocol == Protocol.COMPOUND_V3:
        if settings is None:
            return CompoundV3Adapter(estimator)
        return CompoundV3Adapter(
            estimator,
            base_asset_symbol=settings.compound_base_asset_symbol,
            base_asset_address=settings.compound_base_asset_address,
        )
    raise ValueError(f"Unknown protocol: {protocol}")
