from decimal import Decimal

from core.config import settings
from models.order import Order
from models.user import User
from services.email import render_template

INVOICE_TEMPLATE = "invoices/invoice.txt"


def generate_invoice(order: Order, customer: User) -> bytes:
    """Render a plain-text invoice for a priced order."""
    body = render_template(
        INVOICE_TEMPLATE,
        {
            "order": order,
            "items": list(order.items),
            "customer": customer,
            "vat_percent": (settings.VAT_RATE * Decimal("100")).normalize(),
        },
    )
    return body.encode("utf-8")
