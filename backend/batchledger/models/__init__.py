from .tenancy import Store
from .inventory import Product, InventoryBatch, ReorderThreshold
from .audit import BatchAuditEntry

__all__ = [
    'Store',
    'Product', 'InventoryBatch', 'ReorderThreshold',
    'BatchAuditEntry',
]
