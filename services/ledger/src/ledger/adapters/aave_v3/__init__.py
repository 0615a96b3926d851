from services.ledger.src.ledger.adapters.aave_v3.events import AaveV3Adapter, AavePoolAdapter

__all__ = ["AaveV3Adapter", "AavePoolAdapter"]
