from .reference import User, Product, Truck, Shop
from .inventory import Delivery, Batch, StockMovement
from .loads import TruckLoad, TruckLoadItem
from .sales import Sale, SaleItem
from .allowances import TransportAllowance, TruckAllowance
from .reconciliation import DailyReconciliation, ReconciliationItem

__all__ = [
    "User", "Product", "Truck", "Shop",
    "Delivery", "Batch", "StockMovement",
    "TruckLoad", "TruckLoadItem",
    "Sale", "SaleItem",
    "TransportAllowance", "TruckAllowance",
    "DailyReconciliation", "ReconciliationItem",
]
