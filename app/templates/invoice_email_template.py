"""
Invoice delivery email template for DwellTime
Plain text, the PDF is linked rather than attached
"""
from typing import Optional

from app.config import settings
from app.models.invoice import Invoice


def get_invoice_subject(invoice: Invoice) -> str:
    return f"Detention invoice {invoice.invoice_number}"


def get_invoice_email_body(
    invoice: Invoice,
    recipient_name: Optional[str] = None,
    message: Optional[str] = None
) -> str:
    """Plain text body with the invoice summary and document link"""
    greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"
    document = invoice.pdf_url or "Available on request"

    text_body = f"""{greeting}

Please find below detention invoice {invoice.invoice_number}.
{f"{chr(10)}{message}{chr(10)}" if message else ""}
INVOICE SUMMARY
--------------------
Invoice number: {invoice.invoice_number}
Detention events: {len(invoice.detention_event_ids)}
Amount due: ${invoice.total_amount:,.2f}
Issued: {invoice.created_at.strftime('%Y-%m-%d')}

DOCUMENT
--------------------
{document}

Thank you for your prompt payment.

----
{settings.email_signature}
"""

    return text_body
