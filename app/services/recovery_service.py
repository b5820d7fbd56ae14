"""
Receivables aging for issued invoices.

Drafts are not issued yet and are left out of every total.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from app.models.invoice import Invoice, InvoiceStatus, AgingBucket, AgingSummary

# (bucket, label, min days, max days); None means open-ended
AGING_THRESHOLDS = [
    ("current", "Current (0-14 days)", 0, 14),
    ("aging", "Aging (15-30 days)", 15, 30),
    ("overdue", "Overdue (31-60 days)", 31, 60),
    ("critical", "Critical (60+ days)", 61, None),
]


def days_outstanding(sent_at: datetime, now: datetime) -> int:
    """Whole days since the invoice went out, never negative"""
    return max(0, (now - sent_at).days)


def aging_bucket(days: int) -> str:
    for bucket, _label, low, high in AGING_THRESHOLDS:
        if days >= low and (high is None or days <= high):
            return bucket
    return AGING_THRESHOLDS[0][0]


def build_aging_summary(invoices: List[Invoice], now: datetime) -> AgingSummary:
    buckets = {
        bucket: AgingBucket(bucket=bucket, label=label)
        for bucket, label, _low, _high in AGING_THRESHOLDS
    }

    total_unpaid = Decimal("0.00")
    total_paid = Decimal("0.00")
    unpaid_count = 0
    paid_count = 0

    for invoice in invoices:
        if invoice.status == InvoiceStatus.PAID:
            total_paid += invoice.total_amount
            paid_count += 1
        elif invoice.status == InvoiceStatus.SENT:
            total_unpaid += invoice.total_amount
            unpaid_count += 1
            sent_at = invoice.sent_at or invoice.created_at
            entry = buckets[aging_bucket(days_outstanding(sent_at, now))]
            entry.count += 1
            entry.amount += invoice.total_amount

    total_invoiced = total_unpaid + total_paid
    collection_rate = 0.0
    if total_invoiced > 0:
        collection_rate = float(
            (total_paid * 100 / total_invoiced).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        )

    return AgingSummary(
        buckets=list(buckets.values()),
        total_unpaid=total_unpaid,
        total_paid=total_paid,
        total_invoiced=total_invoiced,
        unpaid_count=unpaid_count,
        paid_count=paid_count,
        collection_rate=collection_rate
    )
