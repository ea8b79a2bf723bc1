from stockledger.services.stock import StockService

__all__ = ["StockService"]
