from .accounts import Company, User
from .catalog import Product, DocumentSequence
from .sales import Quote, QuoteItem, Order, OrderItem, OrderHistory
from .billing import Invoice, InvoiceItem, Payment
from .pricing import PriceList, PriceListItem, ProductPriceHistory, ProductPricing, PricingHistory

__all__ = [
    'Company', 'User',
    'Product', 'DocumentSequence',
    'Quote', 'QuoteItem', 'Order', 'OrderItem', 'OrderHistory',
    'Invoice', 'InvoiceItem', 'Payment',
    'PriceList', 'PriceListItem', 'ProductPriceHistory', 'ProductPricing', 'PricingHistory',
]
