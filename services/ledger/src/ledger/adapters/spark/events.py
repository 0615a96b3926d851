"""Spark Pool events. Spark is an Aave V3 fork and emits the same Pool ABI."""

from services.ledger.src.ledger.adapters.aave_v3.events import AavePoolAdapter
from services.ledger.src.ledger.domain.events import Protocol


class SparkAdapter(AavePoolAdapter):
    protocol = Protocol.SPARK
