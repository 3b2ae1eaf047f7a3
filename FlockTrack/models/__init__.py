# models/__init__.py
from utils.db import Base  # re-export
from .farmer import Farmer
from .stock_ledger import StockLedgerEntry
from .cycle import Cycle, CycleHistory, CycleLog
from .sale import SaleEvent, SaleReport, SaleMetrics
from .notification import Notification

from utils.immutability import register_immutability_listeners

register_immutability_listeners()
