"""
ORM model exports.
"""

from medstock.models.batch import Batch
from medstock.models.category import MedicineCategory
from medstock.models.medicine import Medicine
from medstock.models.stock_event import StockEvent
from medstock.models.stock_transaction import StockTransaction

__all__ = ["Batch", "Medicine", "MedicineCategory", "StockEvent", "StockTransaction"]
