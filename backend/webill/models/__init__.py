from .parties import Party, Category
from .inventory import Item
from .transactions import Transaction, TransactionItem, Payment
from .invoices import Invoice, InvoiceItem

__all__ = [
    'Party', 'Category',
    'Item',
    'Transaction', 'TransactionItem', 'Payment',
    'Invoice', 'InvoiceItem',
]
