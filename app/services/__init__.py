# Services module
from app.services.stock_count_service import StockCountService

__all__ = [
    "StockCountService",
]
