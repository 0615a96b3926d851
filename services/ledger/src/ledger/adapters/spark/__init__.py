from services.ledger.src.ledger.adapters.spark.events import SparkAdapter

__all__ = ["SparkAdapter"]
