from .inventory import Product, StockMovement
from .customers import Customer
from .sales import Sale, SaleItem, Payment
from .audit import TransactionLog
from .documents import DocumentSequence
from .analytics import DailyAnalytics, ManufacturerAnalytics, CategoryAnalytics, AnalyticsProcessedSale

__all__ = [
    'Product', 'StockMovement',
    'Customer',
    'Sale', 'SaleItem', 'Payment',
    'TransactionLog',
    'DocumentSequence',
    'DailyAnalytics', 'ManufacturerAnalytics', 'CategoryAnalytics', 'AnalyticsProcessedSale',
]
