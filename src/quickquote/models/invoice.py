"""Invoice models produced by the extraction stage."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

SUPPORTED_CURRENCIES = {
    "INR": {"symbol": "₹", "name": "Indian Rupee"},
    "USD": {"symbol": "$", "name": "US Dollar"},
    "EUR": {"symbol": "€", "name": "Euro"},
    "GBP": {"symbol": "£", "name": "British Pound"},
    "AED": {"symbol": "د.إ", "name": "UAE Dirham"},
}
DEFAULT_CURRENCY = "INR"

EMPTY_INVOICE_NOTE = "Failed to parse transcript. Please add items manually."


def round_currency(amount: float) -> float:
    return round(amount * 100) / 100


class InvoiceItem(BaseModel):
    id: str = Field(default_factory=lambda: f"item_{uuid.uuid4().hex[:12]}")
    description: str = ""
    quantity: float = 1
    unit_price: float = 0
    amount: float = 0
    confidence: float = 1.0


class ParsedInvoice(BaseModel):
    id: str = Field(default_factory=lambda: f"inv_{uuid.uuid4().hex[:12]}")
    items: List[InvoiceItem] = Field(default_factory=list)
    subtotal: float = 0
    tax_percent: float = 0
    tax_amount: float = 0
    discount_percent: float = 0
    discount_amount: float = 0
    total: float = 0
    currency: str = DEFAULT_CURRENCY
    notes: str = ""
    original_transcript: str = ""
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    status: str = "draft"  # "draft", "processing", "completed", "shared", "error"


class ExtractionOptions(BaseModel):
    currency: str = DEFAULT_CURRENCY
    tax_rate: float = 0.0


def _num(raw: Dict[str, Any], *keys: str) -> Optional[float]:
    """First numeric value found under any of the given keys (camel or snake case)."""
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def _text(value: Any, default: str) -> Any:
    """Numbers become strings; other non-strings are left for validation to reject."""
    if not value:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _percent(value: Optional[float]) -> float:
    return min(100.0, max(0.0, value or 0.0))


def build_invoice(raw: Dict[str, Any], transcript: str, options: ExtractionOptions) -> ParsedInvoice:
    """
    Turn a model's raw JSON answer into a ParsedInvoice.

    Quantities, prices, confidences and percentages are clamped; subtotal,
    tax, discount and total are recomputed from the items rather than trusted.
    """
    items = []
    for raw_item in raw.get("items") or []:
        if not isinstance(raw_item, dict):
            continue
        quantity = _num(raw_item, "quantity", "qty")
        unit_price = _num(raw_item, "unitPrice", "unit_price") or 0.0
        quantity = max(0.0, quantity if quantity else 1.0)
        unit_price = max(0.0, unit_price)
        amount = _num(raw_item, "amount")
        if not amount:
            amount = quantity * unit_price
        confidence = _num(raw_item, "confidence")
        items.append(
            InvoiceItem(
                description=_text(raw_item.get("description"), "Unknown item"),
                quantity=quantity,
                unit_price=unit_price,
                amount=round_currency(max(0.0, amount)),
                confidence=min(1.0, max(0.0, confidence if confidence else 0.5)),
            )
        )

    tax_percent = _num(raw, "taxPercent", "tax_percent")
    if tax_percent is None:
        tax_percent = options.tax_rate
    tax_percent = _percent(tax_percent)
    discount_percent = _percent(_num(raw, "discountPercent", "discount_percent"))

    subtotal = sum(item.amount for item in items)
    tax_amount = subtotal * (tax_percent / 100)
    discount_amount = subtotal * (discount_percent / 100)

    return ParsedInvoice(
        items=items,
        subtotal=round_currency(subtotal),
        tax_percent=tax_percent,
        tax_amount=round_currency(tax_amount),
        discount_percent=discount_percent,
        discount_amount=round_currency(discount_amount),
        total=round_currency(subtotal + tax_amount - discount_amount),
        currency=_text(raw.get("currency"), options.currency),
        notes=_text(raw.get("notes"), ""),
        original_transcript=transcript,
    )


def empty_invoice(transcript: str, options: ExtractionOptions) -> ParsedInvoice:
    """Last-resort invoice that keeps the user's recording usable."""
    return ParsedInvoice(
        tax_percent=options.tax_rate,
        currency=options.currency,
        notes=EMPTY_INVOICE_NOTE,
        original_transcript=transcript,
    )


def average_confidence(invoice: ParsedInvoice) -> float:
    if not invoice.items:
        return 0.0
    return sum(item.confidence for item in invoice.items) / len(invoice.items)


def confidence_level(confidence: float) -> str:
    if confidence >= 0.85:
        return "high"
    if confidence >= 0.60:
        return "medium"
    return "low"
