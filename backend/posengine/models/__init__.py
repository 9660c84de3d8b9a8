from .tenancy import Organization, Store, OrganizationCounter, StoreComplianceProfile
from .catalog import Product, ProductVariant, StorePrice, ProductCost, ProductBundleComponent
from .inventory import StockMovement
from .registers import Register, RegisterShift, CashDrawerMovement
from .sales import Sale, SaleLine, Payment
from .returns import SaleReturn, SaleReturnLine
from .audit import AuditLog, IdempotencyRecord

__all__ = [
    'Organization', 'Store', 'OrganizationCounter', 'StoreComplianceProfile',
    'Product', 'ProductVariant', 'StorePrice', 'ProductCost', 'ProductBundleComponent',
    'StockMovement',
    'Register', 'RegisterShift', 'CashDrawerMovement',
    'Sale', 'SaleLine', 'Payment',
    'SaleReturn', 'SaleReturnLine',
    'AuditLog', 'IdempotencyRecord',
]
