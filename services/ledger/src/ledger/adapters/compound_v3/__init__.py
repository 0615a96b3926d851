from services.ledger.src.ledger.adapters.compound_v3.events import CompoundV3Adapter

__all__ = ["CompoundV3Adapter"]
