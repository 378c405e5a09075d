from .registry import Item, Warehouse, Location
from .ledger import LedgerEntry, StockBalance
from .documents import StockIn, StockOut, StockTransfer, StockAdjustment, DocumentSequence

__all__ = [
    'Item', 'Warehouse', 'Location',
    'LedgerEntry', 'StockBalance',
    'StockIn', 'StockOut', 'StockTransfer', 'StockAdjustment', 'DocumentSequence',
]
