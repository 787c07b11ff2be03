"""Prompt builders for transcription hints and invoice extraction."""
from typing import Optional

from quickquote.models.invoice import ExtractionOptions


def build_invoice_extraction_prompt(
    transcript: str,
    options: Optional[ExtractionOptions] = None,
) -> str:
    """Full extraction prompt with detection rules, examples and a JSON schema."""
    options = options or ExtractionOptions()
    currency = options.currency
    tax_rate = options.tax_rate

    return f"""You are an intelligent invoice extraction assistant. Extract billable items from the following voice transcript.

CONTEXT:
- Default currency: {currency}
- Default tax rate: {tax_rate:g}%

DETECTION RULES:
1. Detect ANY billable item: products, services, labor, consulting, repairs, installations, deliveries, etc.
2. Extract items with their quantities and prices
3. If quantity is not specified, assume 1
4. If a rate is given (e.g., "300 per hour"), calculate: quantity x rate
5. Recognize labor/time-based billing: "2 hours at 500" = 2 x 500 = 1000
6. Recognize product pricing: "3 items at 200 each" = 3 x 200 = 600
7. If no currency is mentioned in transcript, use: {currency}
8. If no tax is mentioned in transcript, apply default tax rate: {tax_rate:g}%
9. Set confidence (0.0-1.0) based on clarity of information

EXAMPLES:
- "Plumber did 3 hours at 500" -> item: "Plumbing service", qty: 3, unitPrice: 500
- "Bought 2 shirts for 800 each" -> item: "Shirt", qty: 2, unitPrice: 800
- "Repair work total 2500" -> item: "Repair work", qty: 1, unitPrice: 2500

OUTPUT FORMAT (JSON only, no markdown):
{{
  "items": [
    {{
      "description": "item/service description",
      "quantity": 1,
      "unitPrice": 0.00,
      "amount": 0.00,
      "confidence": 0.85
    }}
  ],
  "subtotal": 0.00,
  "taxPercent": {tax_rate:g},
  "taxAmount": 0.00,
  "discountPercent": 0,
  "discountAmount": 0.00,
  "total": 0.00,
  "currency": "{currency}",
  "notes": "any additional notes from transcript"
}}

TRANSCRIPT:
{transcript}"""


def build_fallback_prompt(
    transcript: str,
    options: Optional[ExtractionOptions] = None,
) -> str:
    """Short prompt used once the main prompt has exhausted its retries."""
    options = options or ExtractionOptions()
    return (
        "Extract billable items from this text. Return JSON with items array "
        "containing description, quantity, unitPrice, amount. "
        f"Use currency: {options.currency}, tax rate: {options.tax_rate:g}%. Be concise.\n\n"
        f"TEXT:\n{transcript}"
    )


def build_whisper_prompt() -> str:
    """Prompt hint for OpenAI Whisper to keep numbers and trade terms intact."""
    return (
        "Voice note describing billable work for an invoice. May mention: "
        "hours, per hour, each, quantity, rate, labour, parts, materials, "
        "delivery, GST, VAT, tax, discount, rupees, dollars, euros, pounds, dirhams."
    )
